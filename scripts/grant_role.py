from __future__ import annotations

import argparse
import asyncio
import sys

from promptgate.persistence.db import session_scope
from promptgate.persistence.repos.roles import grant_user_role
from promptgate.services.feature_gate import ROLE_HIERARCHY


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Grant an AI governance role to a user.")
    parser.add_argument("--user", required=True, help="User id")
    parser.add_argument("--role", required=True, choices=ROLE_HIERARCHY)
    return parser


async def _run(args: argparse.Namespace) -> int:
    async with session_scope() as session:
        created = await grant_user_role(session, args.user, args.role)
    print(f"user={args.user} role={args.role} created={created}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface actionable errors
        print(f"GRANT_FAILED: {type(exc).__name__}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
