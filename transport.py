"""
Transport - fetches pages directly or through public CORS relays

Every logical fetch walks the relay list once, in order. A relay that errors,
returns a non-200 status, or serves a challenge page is skipped; nothing is
retried against the same relay.
"""

import json
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import settings
from errors import ChallengeBlocked, TransportFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Relay:
    """A URL rewriting endpoint; ``template`` receives the encoded target as {url}"""
    name: str
    template: str
    json_envelope: bool = False

    def rewrite(self, url: str) -> str:
        return self.template.format(url=quote(url, safe=''))


DIRECT = None

CODETABS = Relay('codetabs', 'https://api.codetabs.com/v1/proxy?quest={url}')
CORSPROXY = Relay('corsproxy', 'https://corsproxy.io/?url={url}')
ALLORIGINS = Relay('allorigins', 'https://api.allorigins.win/get?url={url}', json_envelope=True)
WEBSCRAPING_AI = Relay('webscraping.ai', 'https://api.webscraping.ai/html?api_key=demo&url={url}')

# Native: direct first (no cross-origin restriction), relays as fallbacks
NATIVE_RELAYS = [DIRECT, CODETABS, CORSPROXY, ALLORIGINS]
# Browser-hosted: only relay-mediated paths are viable
BROWSER_RELAYS = [CODETABS, CORSPROXY, ALLORIGINS, WEBSCRAPING_AI]

# Outcomes of a single attempt
OK = 'ok'
BLOCKED = 'blocked'
FAILED = 'failed'


def relay_name(relay: Optional[Relay]) -> str:
    return relay.name if relay else 'direct'


def is_valid_html(text: Optional[str], markers: Optional[List[str]] = None) -> bool:
    """Check if a body is a real page rather than an error stub or bot challenge"""
    if not text or len(text) < settings.MIN_DOCUMENT_LENGTH:
        return False
    for indicator in (markers if markers is not None else settings.CHALLENGE_MARKERS):
        if indicator in text:
            return False
    return True


def site_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else ''


class Transport:
    """HTTP access for every component: relay failover for HTML, direct JSON for APIs"""

    def __init__(self,
                 browser_hosted: Optional[bool] = None,
                 custom_relay: Optional[str] = None,
                 timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.browser_hosted = settings.BROWSER_HOSTED if browser_hosted is None else browser_hosted
        self.custom_relay = settings.CUSTOM_RELAY if custom_relay is None else custom_relay
        self.timeout = timeout or settings.REQUEST_TIMEOUT

        # Page session: pooled, but no automatic retries so each relay is hit once
        self.session = session or requests.Session()
        adapter = HTTPAdapter(pool_connections=10, pool_maxsize=20, max_retries=0)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        # API session: catalog APIs rate limit, so back off on 429/5xx
        self.api_session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "HEAD", "OPTIONS"]
        )
        api_adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=4, pool_maxsize=8)
        self.api_session.mount("http://", api_adapter)
        self.api_session.mount("https://", api_adapter)

        logger.info(f"[TRANSPORT] Initialized (browser_hosted={self.browser_hosted}, "
                    f"relays={[relay_name(r) for r in self.candidates()]})")

    def candidates(self) -> List[Optional[Relay]]:
        """Relay order for one logical fetch. ``None`` means a direct request."""
        order = list(BROWSER_RELAYS if self.browser_hosted else NATIVE_RELAYS)
        if self.custom_relay:
            order.insert(0, Relay('custom', self.custom_relay + '{url}'))
        return order

    def _get_headers(self, url: str) -> Dict[str, str]:
        domain = urlparse(url).netloc.lower()
        referer = 'https://www.google.com/'
        for site, origin in settings.REFERER_ORIGINS.items():
            if site in domain:
                referer = origin
                break
        return {
            'User-Agent': random.choice(settings.USER_AGENTS),
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
            'Accept-Language': 'en-US,en;q=0.5',
            'Referer': referer,
            'Cache-Control': 'no-cache',
        }

    def _attempt(self, url: str, relay: Optional[Relay]) -> Tuple[Optional[str], str]:
        """Single request through one relay. Returns (body, outcome)."""
        name = relay_name(relay)
        target = relay.rewrite(url) if relay else url
        try:
            logger.debug(f"[TRANSPORT] Trying {url} via {name}")
            resp = self.session.get(target, headers=self._get_headers(url), timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning(f"[TRANSPORT] ✗ Timeout via {name}")
            return None, FAILED
        except requests.exceptions.RequestException as e:
            logger.warning(f"[TRANSPORT] ✗ Fetch error via {name}: {type(e).__name__}")
            return None, FAILED

        if resp.status_code != 200:
            logger.warning(f"[TRANSPORT] ✗ HTTP {resp.status_code} via {name}")
            # 403/503 with a challenge body still counts as blocked
            return None, BLOCKED if resp.status_code in (403, 503) else FAILED

        body = resp.text or ''
        if relay and relay.json_envelope:
            try:
                body = json.loads(body).get('contents') or ''
            except (ValueError, AttributeError):
                logger.debug(f"[TRANSPORT] {name} did not return a JSON envelope, using raw body")

        if not is_valid_html(body):
            logger.warning(f"[TRANSPORT] ✗ Blocked/challenge page via {name} ({len(body)} chars)")
            return None, BLOCKED

        logger.info(f"[TRANSPORT] ✓ Got valid HTML ({len(body)} chars) via {name}")
        return body, OK

    def fetch_document(self, url: str, relay: Optional[Relay] = None) -> Optional[str]:
        """Fetch once through ``relay`` (direct when None). Never raises."""
        body, _ = self._attempt(url, relay)
        return body

    def fetch(self, url: str) -> str:
        """Fetch through every relay in order and return the first valid page.

        Raises ChallengeBlocked when some relay only ever served challenge
        pages, TransportFailure when every attempt failed outright.
        """
        attempts = 0
        blocked = False
        for relay in self.candidates():
            attempts += 1
            body, outcome = self._attempt(url, relay)
            if outcome == OK:
                return body
            blocked = blocked or outcome == BLOCKED

        logger.error(f"[TRANSPORT] All {attempts} relays exhausted for {url}")
        if blocked:
            if self.browser_hosted:
                message = (f"{urlparse(url).netloc or url} uses protection that blocks browser-hosted "
                           f"requests. Try importing from the native app instead.")
            else:
                message = (f"{urlparse(url).netloc or url} answered only with anti-bot challenge pages. "
                           f"The site may be blocking automated requests.")
            raise ChallengeBlocked(url, message, attempts=attempts)
        raise TransportFailure(
            url,
            f"Failed to fetch {url}. The site may be down or blocking requests.",
            attempts=attempts,
        )

    def fetch_json(self, url: str, params: Any = None) -> Any:
        """GET a JSON API endpoint directly (catalog APIs allow cross-origin access)"""
        headers = {'Accept': 'application/json'}
        if not self.browser_hosted:
            # User-Agent is a forbidden header in browsers
            headers['User-Agent'] = settings.API_USER_AGENT
        try:
            resp = self.api_session.get(url, params=params, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"[TRANSPORT] JSON fetch failed for {url}: {e}")
            raise TransportFailure(url, f"API request failed for {url}: {e}", attempts=1) from e
