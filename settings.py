"""
================================================================================
SETTINGS - Environment configuration for the Binance gainers bot
================================================================================
All tunables are read once at import time from a local .env file (if present)
and the process environment. The bot token has no fallback value: main()
refuses to start without it.
================================================================================
"""

import os
from enum import Enum

from dotenv import load_dotenv

# --- Load Environment Variables ---
load_dotenv()


def _env_int(name: str, default: int, minimum: int | None = None) -> int:
    """
    Read an integer variable, falling back to default on missing/bad values.
    Values below `minimum` are raised to it.
    """
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw)
        except ValueError:
            value = default
    if minimum is not None and value < minimum:
        return minimum
    return value


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(item.strip().upper() for item in raw.split(',') if item.strip())


# ==============================================================================
# TELEGRAM
# ==============================================================================
BOT_TOKEN = os.environ.get('BOT_TOKEN') or os.environ.get('TG_BOT_TOKEN')
MENU_COMMAND = os.environ.get('MENU_COMMAND', 'binance').lstrip('/')

# ==============================================================================
# API ENDPOINTS
# ==============================================================================
BINANCE_API_URL = os.environ.get('BINANCE_API_URL', 'https://api.binance.com/api/v3').rstrip('/')

# ==============================================================================
# RANKING
# ==============================================================================
# Quote currencies a symbol must end with to be ranked
QUOTE_ASSETS = _env_list('QUOTE_ASSETS', 'USDT,BUSD')

# Number of entries shown in a reply
TOP_GAINERS_LIMIT = _env_int('TOP_GAINERS_LIMIT', 10, minimum=1)

# Seconds a computed ranking is reused; 0 disables the cache
RESULT_CACHE_TTL = _env_int('RESULT_CACHE_TTL', 0)

# ==============================================================================
# HTTP CLIENT
# ==============================================================================
HTTP_TIMEOUT = _env_int('HTTP_TIMEOUT', 10, minimum=1)
HTTP_CONNECT_TIMEOUT = _env_int('HTTP_CONNECT_TIMEOUT', 5, minimum=1)
HTTP_CONNECTION_LIMIT = _env_int('HTTP_CONNECTION_LIMIT', 50, minimum=1)
HTTP_CONNECTION_LIMIT_PER_HOST = _env_int('HTTP_CONNECTION_LIMIT_PER_HOST', 10, minimum=1)

# ==============================================================================
# KEEP-ALIVE SERVER
# ==============================================================================
KEEP_ALIVE_HOST = os.environ.get('KEEP_ALIVE_HOST', '0.0.0.0')
KEEP_ALIVE_PORT = _env_int('KEEP_ALIVE_PORT', 8080)  # 0 disables the server

# ==============================================================================
# LOGGING
# ==============================================================================
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
LOG_FILE = os.environ.get('LOG_FILE')


# ==============================================================================
# INTERVALS
# ==============================================================================

class Interval(Enum):
    """
    Kline intervals offered in the bot menu.

    Each member carries:
        callback_data: Inline button identifier (e.g. 'int_5m')
        token: Binance kline interval token (e.g. '5m')
        label: Human-readable duration used in replies
    """

    ONE_MINUTE = ('int_1m', '1m', '1 minute')
    FIVE_MINUTES = ('int_5m', '5m', '5 minutes')
    FIFTEEN_MINUTES = ('int_15m', '15m', '15 minutes')
    THIRTY_MINUTES = ('int_30m', '30m', '30 minutes')
    ONE_HOUR = ('int_1h', '1h', '1 hour')
    FOUR_HOURS = ('int_4h', '4h', '4 hours')
    ONE_DAY = ('int_1d', '1d', '1 day')

    def __init__(self, callback_data: str, token: str, label: str):
        self.callback_data = callback_data
        self.token = token
        self.label = label

    @classmethod
    def from_callback_data(cls, data: str | None) -> 'Interval | None':
        for interval in cls:
            if interval.callback_data == data:
                return interval
        return None


CALLBACK_PREFIX = 'int_'
