import sys
from pathlib import Path
import os

# Ensure repo root on sys.path for imports from anywhere in tests tree.
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Tests never talk to the real upstreams; every client is a MockTransport.
os.environ.setdefault("FETCH_MAX_ATTEMPTS", "5")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
