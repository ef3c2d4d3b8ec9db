"""Exceptions raised by the acquisition pipeline."""

from typing import Optional

# Bodies starting with this prefix are failures rendered as markup; they are
# never persisted as chapter content.
ERROR_MARKER_PREFIX = '<p class="scrape-error">'

REDIRECT_CYCLE_MARKER = f'{ERROR_MARKER_PREFIX}Redirect loop detected. The source keeps bouncing between pages.</p>'
IMAGES_NOT_FOUND_MARKER = f'{ERROR_MARKER_PREFIX}No images found for this chapter.</p>'


def is_error_marker(body: Optional[str]) -> bool:
    return bool(body) and body.startswith(ERROR_MARKER_PREFIX)


class ScraperError(Exception):
    """Base class for all scraping failures"""


class TransportFailure(ScraperError):
    """Every relay was tried once and none produced usable content"""

    def __init__(self, url: str, message: Optional[str] = None, attempts: int = 0):
        self.url = url
        self.attempts = attempts
        super().__init__(message or f"Failed to fetch {url} after {attempts} attempt(s)")


class ChallengeBlocked(TransportFailure):
    """At least one relay answered, but only with an anti-bot challenge page"""


class ExtractionMiss(ScraperError):
    """A document was fetched but no heuristic tier found usable content"""


class RedirectCycle(ScraperError):
    """Client-side redirects loop back to an already visited URL"""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Redirect loop detected at {url}")


class UnsupportedSource(ScraperError):
    """The selected source does not offer the requested capability"""
