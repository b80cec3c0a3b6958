from __future__ import annotations

import argparse
import asyncio
import json
import sys

from wagate.persistence.db import SessionLocal
from wagate.persistence.gateway import PersistenceGateway


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print the durable credential blob of a session")
    parser.add_argument("--session", required=True, help="Session identifier")
    return parser


async def _print_session(args: argparse.Namespace) -> int:
    gateway = PersistenceGateway(SessionLocal)
    if not await gateway.session_exists(args.session):
        print(f"session {args.session} not found", file=sys.stderr)
        return 1
    blob = await gateway.load_credentials(args.session)
    print(f"DB session for {args.session}:")
    print(json.dumps(blob, indent=2, sort_keys=True))
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_print_session(args))
    except Exception as exc:  # noqa: BLE001 - surface lookup failures clearly
        print(f"print_session failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
