"""
Scraper Settings - process-wide configuration loaded once at startup

Values come from the environment (a local .env file is honoured) and fall back
to the defaults below. Heuristic tables that are tuned over time without
touching control flow (challenge markers, relays, user agents) also live here.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()  # Loads variables from .env


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, '')
    return [item.strip() for item in raw.split(',') if item.strip()]


# Browser-hosted contexts cannot fetch cross-origin pages directly, so the
# direct path is dropped from the relay order there.
BROWSER_HOSTED = _env_bool('SCRAPER_BROWSER_HOSTED', False)

# Optional user supplied relay prefix, tried before the built-in relays
CUSTOM_RELAY = os.getenv('SCRAPER_PROXY', '').strip()

REQUEST_TIMEOUT = _env_float('SCRAPER_TIMEOUT', 30.0)
CHAPTER_DELAY = _env_float('SCRAPER_CHAPTER_DELAY', 0.5)
LIST_PAGE_DELAY = _env_float('SCRAPER_LIST_PAGE_DELAY', 0.5)
MAX_LIST_PAGES = _env_int('SCRAPER_MAX_LIST_PAGES', 50)
LOG_LEVEL = os.getenv('SCRAPER_LOG_LEVEL', 'INFO').upper()

# Default storage directory (same root the download history used)
LIBRARY_DIR = Path(os.getenv('SCRAPER_LIBRARY_DIR', str(Path.home() / '.novel_cache' / 'library')))

# Anything shorter is an error stub, not a page
MIN_DOCUMENT_LENGTH = 500

# Substrings that identify anti-bot interstitials served with HTTP 200
CHALLENGE_MARKERS = [
    'cf-browser-verification',
    'Checking your browser',
    'Just a moment',
    'Enable JavaScript and cookies',
    'Attention Required',
    'Access denied',
    '403 Forbidden',
    'cf-challenge',
    '_cf_chl',
    'Verifying you are human',
] + _env_list('SCRAPER_EXTRA_CHALLENGE_MARKERS')

# Rotating User Agents for anti-detection
USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 14_2) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0',
    'Mozilla/5.0 (Linux; Android 14; Pixel 8 Pro) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.6167.178 Mobile Safari/537.36',
    'Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1',
]

# Catalog APIs identify the client instead of pretending to be a browser
API_USER_AGENT = 'NovelSync/1.0'

# Sites that reject requests without their own origin as referer
REFERER_ORIGINS = {
    'kagane.org': 'https://kagane.org/',
    'asuracomic.net': 'https://asuracomic.net/',
}
