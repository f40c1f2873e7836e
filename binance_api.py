"""
================================================================================
BINANCE API - Async client for the public Binance Spot REST endpoints
================================================================================
Only two unauthenticated endpoints are used:
- /exchangeInfo : list of instruments and their trading status
- /klines       : recent candles for one symbol/interval
================================================================================
"""

import asyncio
import logging

import aiohttp

import settings

logger = logging.getLogger(__name__)


# ==============================================================================
# ERRORS
# ==============================================================================

class ExchangeError(Exception):
    """Base class for failures talking to the exchange."""


class ExchangeNetworkError(ExchangeError):
    """Connection failure, DNS error or timeout."""


class ExchangeHTTPError(ExchangeError):
    """Exchange answered with an unexpected HTTP status."""

    def __init__(self, status: int, url: str):
        super().__init__(f"HTTP {status} from {url}")
        self.status = status
        self.url = url


class RateLimitedError(ExchangeHTTPError):
    """HTTP 429 (too many requests) or 418 (IP temporarily banned)."""


class ExchangeParseError(ExchangeError):
    """Response body is not the JSON shape we expect."""


RATE_LIMIT_STATUSES = (429, 418)


# ==============================================================================
# HTTP SESSION MANAGEMENT
# ==============================================================================
# Global HTTP session for connection pooling and reuse
_http_session: aiohttp.ClientSession | None = None

# Caps in-flight requests at the per-host pool size. aiohttp counts the wait
# for a free pooled connection against the connect timeout, so requests must
# not queue inside the connector.
_request_semaphore: asyncio.Semaphore | None = None
_semaphore_loop: asyncio.AbstractEventLoop | None = None


async def get_http_session() -> aiohttp.ClientSession:
    """
    Get or create a singleton HTTP session with connection pooling.

    Requests are admitted through _get_request_semaphore() so that a ranking
    fanning out over every symbol never queues inside the connector.

    Returns:
        aiohttp.ClientSession: Configured HTTP session
    """
    global _http_session

    if _http_session is None or _http_session.closed:
        timeout = aiohttp.ClientTimeout(total=settings.HTTP_TIMEOUT, connect=settings.HTTP_CONNECT_TIMEOUT)
        connector = aiohttp.TCPConnector(
            limit=settings.HTTP_CONNECTION_LIMIT,
            limit_per_host=settings.HTTP_CONNECTION_LIMIT_PER_HOST,
            ttl_dns_cache=300,
        )
        _http_session = aiohttp.ClientSession(timeout=timeout, connector=connector)

    return _http_session


async def close_http_session():
    """Close the global HTTP session. Called from the bot shutdown hook."""
    global _http_session
    if _http_session and not _http_session.closed:
        await _http_session.close()
    _http_session = None


def _get_request_semaphore() -> asyncio.Semaphore:
    """Semaphore bound to the running loop, recreated if the loop changed."""
    global _request_semaphore, _semaphore_loop

    loop = asyncio.get_running_loop()
    if _request_semaphore is None or _semaphore_loop is not loop:
        size = min(settings.HTTP_CONNECTION_LIMIT, settings.HTTP_CONNECTION_LIMIT_PER_HOST)
        _request_semaphore = asyncio.Semaphore(max(1, size))
        _semaphore_loop = loop
    return _request_semaphore


# ==============================================================================
# REQUESTS
# ==============================================================================

async def fetch_json(path: str, params: dict | None = None) -> dict | list:
    """
    GET a Binance endpoint and decode its JSON body.

    Args:
        path: Endpoint path relative to BINANCE_API_URL (e.g. '/klines')
        params: Optional query parameters

    Returns:
        dict | list: Parsed JSON

    Raises:
        RateLimitedError: Exchange refused the request for rate limiting
        ExchangeHTTPError: Any other non-200 status
        ExchangeNetworkError: Transport failure or timeout
        ExchangeParseError: Body is not valid JSON
    """
    url = f"{settings.BINANCE_API_URL}{path}"
    session = await get_http_session()
    try:
        async with _get_request_semaphore():
            async with session.get(url, params=params) as resp:
                if resp.status in RATE_LIMIT_STATUSES:
                    raise RateLimitedError(resp.status, url)
                if resp.status != 200:
                    raise ExchangeHTTPError(resp.status, url)
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise ExchangeParseError(f"Invalid JSON from {url}") from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise ExchangeNetworkError(f"{type(e).__name__} for {url}: {e}") from e


def filter_eligible_symbols(symbols: list, quote_assets=None) -> list[str]:
    """
    Keep actively trading symbols quoted in one of the allowed assets.

    Args:
        symbols: The 'symbols' array of an /exchangeInfo response
        quote_assets: Allowed quote suffixes (default: settings.QUOTE_ASSETS)

    Returns:
        list[str]: Eligible symbol names, in response order
    """
    quotes = tuple(quote_assets or settings.QUOTE_ASSETS)
    return [
        s['symbol'] for s in symbols
        if s.get('status') == 'TRADING' and s.get('symbol', '').endswith(quotes)
    ]


async def list_eligible_symbols() -> list[str]:
    """
    Fetch /exchangeInfo and return the symbols worth ranking.

    Raises:
        ExchangeError: Request failed or the response has no usable symbol list
    """
    data = await fetch_json('/exchangeInfo')
    symbols = data.get('symbols') if isinstance(data, dict) else None
    if not isinstance(symbols, list):
        raise ExchangeParseError("exchangeInfo response has no 'symbols' list")
    try:
        return filter_eligible_symbols(symbols)
    except (TypeError, KeyError, AttributeError) as e:
        raise ExchangeParseError(f"Malformed exchangeInfo symbol entry: {e}") from e


def calculate_change(klines) -> float | None:
    """
    Percentage change between the closes of the last two klines.

    Returns None when fewer than two candles are present, a close price is
    not numeric, or the previous close is zero.
    """
    if not isinstance(klines, list) or len(klines) < 2:
        return None

    try:
        prev_close = float(klines[-2][4])   # Previous candle close price (index 4)
        curr_close = float(klines[-1][4])   # Current candle close price
    except (TypeError, ValueError, IndexError, KeyError):
        return None

    if prev_close == 0:
        return None

    # ((new - old) / old) * 100
    return ((curr_close - prev_close) / prev_close) * 100


async def get_percentage_change(symbol: str, interval: str) -> float | None:
    """
    Price change percentage of a symbol over the latest kline interval.

    Errors never propagate: a rate limit, transport failure or malformed
    response is logged and reported as None so the caller can skip the symbol.

    Args:
        symbol: Trading pair (e.g. 'BTCUSDT')
        interval: Binance kline interval token (e.g. '5m')

    Returns:
        float | None: Percentage change, or None when unavailable
    """
    try:
        klines = await fetch_json('/klines', {'symbol': symbol, 'interval': interval, 'limit': 2})
    except RateLimitedError as e:
        logger.warning("Rate limited (%s) while fetching %s klines", e.status, symbol)
        return None
    except ExchangeError as e:
        logger.warning("Could not fetch %s klines: %s", symbol, e)
        return None

    return calculate_change(klines)
