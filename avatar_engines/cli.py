"""Command line entry point for the avatar engines."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from avatar_engines.api.server import configure_logging, create_app
from avatar_engines.api.stores import ServiceContainer
from avatar_engines.asset_bundle.archive import pack_bundle
from avatar_engines.asset_bundle.service import outfit_base_name, safe_file_name, user_base_name
from avatar_engines.common.errors import AvatarEngineError
from avatar_engines.config import runtime_config
from avatar_engines.roblox_identity.service import normalize_numeric_id
from avatar_engines.scene_engine.avatar.poses import PoseLibrary

logger = logging.getLogger(__name__)


async def _userid(args: argparse.Namespace, container: ServiceContainer) -> int:
    user_id = await container.resolver.username_to_id(args.username)
    print(user_id)
    return 0


async def _outfits(args: argparse.Namespace, container: ServiceContainer) -> int:
    result = await container.resolver.list_outfits(args.user_id)
    print(json.dumps(result.model_dump(), indent=2))
    return 0


async def _download(args: argparse.Namespace, container: ServiceContainer) -> int:
    if args.outfit_id:
        outfit_id = normalize_numeric_id(args.outfit_id, "outfitId")
        descriptor = await container.resolver.resolve_outfit_descriptor(outfit_id)
        base_name = outfit_base_name(outfit_id, args.name)
    else:
        user_id = normalize_numeric_id(args.user_id, "userId")
        descriptor = await container.resolver.resolve_avatar_descriptor(user_id)
        base_name = user_base_name(user_id, args.name)
    bundle = await container.builder.build(descriptor, base_name)
    target = args.output or Path(f"{bundle.base_name}.zip")
    target.write_bytes(pack_bundle(bundle))
    print(target)
    return 0


async def _render(args: argparse.Namespace, container: ServiceContainer) -> int:
    outfit_id = int(normalize_numeric_id(args.outfit_id, "outfitId"))
    png = await container.exporter().render_outfit(outfit_id, args.name, args.pose, strict_pose=bool(args.pose))
    target = args.output or Path(f"{outfit_base_name(outfit_id, args.name)}.png")
    target.write_bytes(png)
    print(target)
    return 0


async def _thumbnail(args: argparse.Namespace, container: ServiceContainer) -> int:
    if args.outfit_id:
        outfit_id = normalize_numeric_id(args.outfit_id, "outfitId")
        png = await container.resolver.fetch_outfit_thumbnail(outfit_id)
        default_name = f"Render_Outfit_{outfit_id}.png"
    else:
        user_id = normalize_numeric_id(args.user_id, "userId")
        png = await container.resolver.fetch_avatar_thumbnail(user_id)
        default_name = f"Render_{safe_file_name(args.name, 'User')}_{user_id}.png"
    target = args.output or Path(default_name)
    target.write_bytes(png)
    print(target)
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=runtime_config.get_log_level().lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="avatar-engines", description="Roblox avatar asset tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("userid", help="Resolve a username to a user id")
    p.add_argument("username")

    p = sub.add_parser("outfits", help="List a user's saved outfits")
    p.add_argument("user_id")

    p = sub.add_parser("download", help="Download an avatar or outfit bundle zip")
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--outfit-id")
    target.add_argument("--user-id")
    p.add_argument("--name", default=None, help="Name used in the bundle file names")
    p.add_argument("-o", "--output", type=Path, default=None)

    p = sub.add_parser("render", help="Render an outfit to PNG")
    p.add_argument("outfit_id")
    p.add_argument("--name", default=None)
    p.add_argument("--pose", choices=PoseLibrary.ids(), default=None)
    p.add_argument("-o", "--output", type=Path, default=None)

    p = sub.add_parser("thumbnail", help="Download the upstream 2D render of an avatar or outfit")
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--outfit-id")
    target.add_argument("--user-id")
    p.add_argument("--name", default=None, help="Username used in the avatar render file name")
    p.add_argument("-o", "--output", type=Path, default=None)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    return parser


_COMMANDS = {
    "userid": _userid,
    "outfits": _outfits,
    "download": _download,
    "render": _render,
    "thumbnail": _thumbnail,
}


async def _run(args: argparse.Namespace) -> int:
    container = ServiceContainer()
    try:
        return await _COMMANDS[args.command](args, container)
    finally:
        await container.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    if args.command == "serve":
        return _serve(args)
    try:
        return asyncio.run(_run(args))
    except AvatarEngineError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
