"""Ledger maintenance job.

Deletes refresh tokens past the retention period and expired blacklist
entries, then logs blacklist statistics. Meant to be run periodically by an
external scheduler::

    python -m timekeeper.services.maintenance
"""

import asyncio
from datetime import timedelta

from timekeeper.config.config import settings
from timekeeper.core.logging import logger
from timekeeper.db.session import AsyncSessionLocal, engine
from timekeeper.services.token_ledger import TokenLedger


async def purge_tokens(ledger: TokenLedger) -> int:
    """Run one purge pass and report what is left in the blacklist."""
    deleted = await ledger.purge_expired()
    stats = await ledger.blacklist_stats()
    logger.info(
        "Token maintenance deleted={} blacklist total={} active={} logout={} security_logout={}",
        deleted,
        stats.total_blacklisted,
        stats.active_blacklisted,
        stats.logout_count,
        stats.security_logout_count,
    )
    return deleted


async def main() -> None:
    ledger = TokenLedger(
        AsyncSessionLocal, retention=timedelta(days=settings.TOKEN_RETENTION_DAYS)
    )
    try:
        await purge_tokens(ledger)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
