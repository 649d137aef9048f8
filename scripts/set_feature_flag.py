from __future__ import annotations

import argparse
import asyncio
import sys

from promptgate.persistence.db import session_scope
from promptgate.persistence.repos.feature_flags import set_feature_flag
from promptgate.services.feature_gate import FEATURE_ROLE_MAP


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Enable or disable an AI feature for a tenant.")
    parser.add_argument("--tenant", required=True, help="Tenant id")
    parser.add_argument("--feature", required=True, help="Feature key")
    state = parser.add_mutually_exclusive_group(required=True)
    state.add_argument("--enable", action="store_true")
    state.add_argument("--disable", action="store_true")
    return parser


async def _run(args: argparse.Namespace) -> int:
    async with session_scope() as session:
        row = await set_feature_flag(session, args.tenant, args.feature, bool(args.enable))
    print(f"tenant={row.tenant_id} feature={row.feature_key} enabled={row.enabled}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    if args.feature not in FEATURE_ROLE_MAP:
        print(f"UNKNOWN_FEATURE: {args.feature}", file=sys.stderr)
        return 2
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
