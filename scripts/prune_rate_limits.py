from __future__ import annotations

import asyncio

from promptgate.persistence.db import session_scope
from promptgate.persistence.repos.rate_limits import prune_rate_limit_counters


async def prune() -> None:
    async with session_scope() as session:
        deleted = await prune_rate_limit_counters(session)
    print(f"pruned_rate_limit_counters={deleted}")


if __name__ == "__main__":
    asyncio.run(prune())
