"""
Metadata extraction for a work's landing page

Each field walks an ordered table of (selector, attribute) locators and keeps
the first non-empty match, so markup drift across redesigns is absorbed by
the tables instead of per-site branches.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# attribute None means "use the element's text"
Locator = Tuple[str, Optional[str]]

TITLE_LOCATORS: List[Locator] = [
    ('.novel-info .novel-title', None),
    ('.novel-title', None),
    ('h1.entry-title', None),
    ('.post-title h1', None),
    ('h1', None),
    ('h2.title', None),
    ('.book-name', None),
    ('.truyen-title', None),
    ('meta[property="og:title"]', 'content'),
    ('title', None),
]

AUTHOR_LOCATORS: List[Locator] = [
    ('.author-content a', None),
    ('.author-content', None),
    ('.author a', None),
    ('.author-name', None),
    ('.info-author', None),
    ('.book-author', None),
    ('span[itemprop="author"]', None),
    ('[itemprop="author"]', None),
    ('.txt-author', None),
    ('a[href*="/author/"]', None),
    ('.author', None),
    ('meta[name="author"]', 'content'),
]

COVER_SELECTORS = [
    '.novel-cover img', '.book img', '.book-cover img', '.img-cover img', '.img-cover',
    '.summary_image img', '.thumb img', 'img.wp-post-image', '.cover img',
    'img[alt*="cover"]', 'meta[property="og:image"]',
]
# Lazy-loading attributes take priority over the placeholder in src
COVER_ATTRIBUTES = ['data-src', 'data-lazy-src', 'data-original', 'src', 'content']
COVER_LOCATORS: List[Locator] = [(sel, attr) for sel in COVER_SELECTORS for attr in COVER_ATTRIBUTES]

SUMMARY_LOCATORS: List[Locator] = [
    ('.summary__content', None),
    ('.description-summary', None),
    ('.desc-text', None),
    ('.novel-description', None),
    ('.description', None),
    ('.synopsis', None),
    ('[itemprop="description"]', None),
    ('.book-intro', None),
    ('.summary', None),
    ('meta[property="og:description"]', 'content'),
    ('meta[name="description"]', 'content'),
]

STATUS_LOCATORS: List[Locator] = [
    ('.post-status .summary-content', None),
    ('.status .summary-content', None),
    ('.novel-status', None),
    ('[itemprop="status"]', None),
    ('.status', None),
    ('.info li:-soup-contains("Status")', None),
]

TITLE_SUFFIXES = [
    r'\s+Novel\s*-\s*Read.*$',
    r'\s*-\s*Free Web Novel.*$',
    r'\s*-\s*Read Free.*$',
    r'\s*\|\s*Novel.*$',
    r'\s*-\s*Novel\s*$',
]

PLACEHOLDER_WORDS = ('author', 'authors', 'n/a', 'unknown', 'updating')


def first_match(soup: BeautifulSoup, locators: List[Locator]) -> str:
    """Return the first non-empty text/attribute value produced by ``locators``"""
    for selector, attr in locators:
        try:
            el = soup.select_one(selector)
        except Exception as e:
            logger.debug(f"[METADATA] Selector {selector!r} failed: {e}")
            continue
        if el is None:
            continue
        if attr:
            value = el.get(attr)
            if isinstance(value, list):
                value = ' '.join(value)
            value = (value or '').strip()
            if value.startswith('data:image'):
                continue
        else:
            value = ' '.join(el.get_text(' ', strip=True).split())
        if value:
            return value
    return ''


def resolve_url(src: str, page_url: str) -> str:
    """Make a scraped URL absolute against the page it came from"""
    src = (src or '').strip()
    if not src or src.startswith(('http://', 'https://', 'data:')):
        return src
    if src.startswith('//'):
        return 'https:' + src
    parsed = urlparse(page_url)
    if src.startswith('/') and parsed.netloc:
        return f"{parsed.scheme or 'https'}://{parsed.netloc}{src}"
    return urljoin(page_url, src)


def clean_work_title(title: str) -> str:
    for pattern in TITLE_SUFFIXES:
        title = re.sub(pattern, '', title, flags=re.I)
    return title.strip()


def normalize_status(raw: str) -> str:
    lowered = raw.lower()
    if 'ongoing' in lowered or 'on going' in lowered:
        return 'Ongoing'
    if 'complet' in lowered or 'finished' in lowered:
        return 'Completed'
    if 'hiatus' in lowered:
        return 'Hiatus'
    return re.sub(r'^status\s*:?\s*', '', raw, flags=re.I).strip()


def extract_metadata(soup: BeautifulSoup, url: str) -> Dict[str, str]:
    """Extract title/author/cover/summary/status from a landing page.

    Every field may come back empty; an empty title means extraction failed.
    """
    title = clean_work_title(first_match(soup, TITLE_LOCATORS))

    author = first_match(soup, AUTHOR_LOCATORS)
    author = re.sub(r'^Authors?\s*:?\s*', '', author, flags=re.I).strip()
    if author.lower() in PLACEHOLDER_WORDS:
        author = ''

    cover_url = ''
    for selector, attr in COVER_LOCATORS:
        candidate = first_match(soup, [(selector, attr)])
        if candidate and 'placeholder' not in candidate.lower() and 'nocover' not in candidate.lower():
            cover_url = resolve_url(candidate, url)
            break

    summary = first_match(soup, SUMMARY_LOCATORS)[:2000]
    status_raw = first_match(soup, STATUS_LOCATORS)
    status = normalize_status(status_raw) if status_raw else ''

    logger.debug(f"[METADATA] {url}: title={title!r} author={author!r} cover={'yes' if cover_url else 'no'}")
    return {
        'title': title,
        'author': author,
        'cover_url': cover_url,
        'summary': summary,
        'status': status,
    }
