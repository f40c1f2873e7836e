"""
================================================================================
GAINERS - Rank Binance symbols by their latest kline price change
================================================================================
"""

import asyncio
import logging
from dataclasses import dataclass

from cachetools import TTLCache

import settings
from binance_api import ExchangeError, get_percentage_change, list_eligible_symbols
from settings import Interval

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GainerEntry:
    symbol: str
    change: float


# ==============================================================================
# CACHING SYSTEM
# ==============================================================================
# Last ranking per interval token. Disabled (None) unless RESULT_CACHE_TTL > 0.
_results_cache: TTLCache | None = (
    TTLCache(maxsize=len(Interval), ttl=settings.RESULT_CACHE_TTL)
    if settings.RESULT_CACHE_TTL > 0 else None
)


# ==============================================================================
# RANKING
# ==============================================================================

def rank_gainers(entries, limit: int = settings.TOP_GAINERS_LIMIT) -> list[GainerEntry]:
    """
    Sort entries by change (highest first) and keep the top `limit`.

    Equal changes are ordered alphabetically by symbol so the output is
    deterministic.
    """
    return sorted(entries, key=lambda e: (-e.change, e.symbol))[:limit]


async def find_top_gainers(interval: str, limit: int = settings.TOP_GAINERS_LIMIT) -> list[GainerEntry]:
    """
    Find the symbols with the largest price change over the last interval.

    Strategy:
    1. Fetch the eligible symbol list once
    2. Request every symbol's last two klines concurrently
    3. Drop symbols without a usable change, sort, truncate

    A failure fetching one symbol never aborts the others, and a failure
    fetching the symbol list yields an empty result rather than an exception.

    Args:
        interval: Binance kline interval token (e.g. '5m')
        limit: Maximum number of entries to return

    Returns:
        list[GainerEntry]: Up to `limit` entries, highest change first
    """
    if _results_cache is not None and interval in _results_cache:
        return _results_cache[interval][:limit]

    try:
        symbols = await list_eligible_symbols()
    except ExchangeError as e:
        logger.error("Could not load exchange symbols: %s", e)
        return []

    logger.debug("Computing %s changes for %d symbols", interval, len(symbols))

    results = await asyncio.gather(
        *(get_percentage_change(sym, interval) for sym in symbols),
        return_exceptions=True,
    )

    entries = []
    for sym, change in zip(symbols, results):
        if isinstance(change, BaseException):
            logger.error("Unexpected error computing change for %s: %r", sym, change)
            continue
        if change is not None:
            entries.append(GainerEntry(sym, change))

    top = rank_gainers(entries, limit)
    logger.info("Ranked %d/%d symbols for %s", len(entries), len(symbols), interval)

    if _results_cache is not None and top:
        _results_cache[interval] = top
    return top


# ==============================================================================
# FORMATTING
# ==============================================================================

def format_gainers(entries: list[GainerEntry], interval: Interval) -> str:
    """Render a ranking as a Markdown message."""
    if not entries:
        return (
            f"⚠️ *Could not fetch data for the last {interval.label}* or no coin "
            f"is gaining. Please try again later."
        )

    msg = f"📈 *Top {len(entries)} gainers over the last {interval.label}:*\n\n"
    for i, item in enumerate(entries):
        msg += f"{i + 1}. *{item.symbol}*: {item.change:.2f}%\n"
    return msg
