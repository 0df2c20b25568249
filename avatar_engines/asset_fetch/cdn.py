"""Content-hash to CDN shard URL resolution.

The CDN spreads assets over a fixed set of shard hosts. The shard is chosen
by XOR-folding every character code of the hash into a seed of 31 and
taking the result modulo 8; any other fold picks the wrong host and the
asset 404s.
"""
from __future__ import annotations

from typing import Optional

from avatar_engines.config import runtime_config

SHARD_SEED = 31
SHARD_COUNT = 8
DEFAULT_SHARD_TYPE = "t"


def shard_index(asset_hash: str) -> int:
    checksum = SHARD_SEED
    for ch in asset_hash:
        checksum ^= ord(ch)
    return checksum % SHARD_COUNT


def hash_url(
    asset_hash: str,
    shard_type: str = DEFAULT_SHARD_TYPE,
    host_template: Optional[str] = None,
) -> str:
    template = host_template or runtime_config.get_cdn_host_template()
    host = template.format(type=shard_type, shard=shard_index(asset_hash))
    return f"{host.rstrip('/')}/{asset_hash}"
