"""
Image content classifier for webtoon/manga chapter pages

Scraped chapter pages mix story pages with logos, recruitment banners and ad
creatives. Story pages on the supported hosts have recognisable filenames,
so the verdict is a table lookup on the cleaned filename. Document order is
kept as-is: numeric filenames do not always follow reading order, the DOM does.
"""

import logging
import re
from typing import Iterable, List, Optional, Pattern, Sequence
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

REJECT_EXTENSIONS = ('.gif',)

BLACKLIST_KEYWORDS = (
    'logo', 'banner', 'discord', 'promo', 'ad-', 'patreon',
    'credit', 'recruit', 'intro', 'outro',
)

ACCEPT_PATTERNS: Sequence[Pattern] = (
    # 003
    re.compile(r'^\d+$'),
    # page-12, img_4, p07, i12
    re.compile(r'^(?:page|img|image|p|i)[-_]?\d+$', re.I),
    # CDN sortable ids (ULID style: leading 0-7 then base-32 alphabet, case varies)
    re.compile(r'^[0-7][0-9a-z]{25,27}$', re.I),
    # short hex hash
    re.compile(r'^[0-9a-f]{8}$', re.I),
)

IMAGE_EXTENSION_RE = re.compile(r'\.(?:jpe?g|png|webp|avif|gif|bmp)$', re.I)
OPTIMIZED_SUFFIX_RE = re.compile(r'[-_]optimized$', re.I)
IMG_SRC_RE = re.compile(r'<img[^>]*?\bsrc\s*=\s*["\']([^"\']+)["\']', re.I)


def image_source(item: str) -> str:
    """Accept a bare URL or an <img> tag and return the URL"""
    item = (item or '').strip()
    if item.startswith('<'):
        match = IMG_SRC_RE.search(item)
        return match.group(1) if match else ''
    return item


def clean_filename(url: str) -> str:
    """Filename without directory, query, extension or -optimized suffix"""
    path = unquote(urlparse(url).path)
    filename = path.rsplit('/', 1)[-1]
    name = IMAGE_EXTENSION_RE.sub('', filename)
    return OPTIMIZED_SUFFIX_RE.sub('', name)


def is_content_image(url: str,
                     blacklist: Sequence[str] = BLACKLIST_KEYWORDS,
                     patterns: Sequence[Pattern] = ACCEPT_PATTERNS,
                     reject_extensions: Sequence[str] = REJECT_EXTENSIONS) -> bool:
    if not url:
        return False
    path = urlparse(url).path.lower()
    if path.endswith(tuple(reject_extensions)):
        return False
    name = clean_filename(url)
    lowered = name.lower()
    if any(word in lowered for word in blacklist):
        return False
    return any(pattern.match(name) for pattern in patterns)


def filter_content_images(items: Iterable[str],
                          blacklist: Optional[Sequence[str]] = None,
                          patterns: Optional[Sequence[Pattern]] = None) -> List[str]:
    """Keep story pages, drop everything else. Output is a subsequence of the input."""
    blacklist = BLACKLIST_KEYWORDS if blacklist is None else blacklist
    patterns = ACCEPT_PATTERNS if patterns is None else patterns
    kept = []
    rejected = 0
    for item in items:
        url = image_source(item)
        if is_content_image(url, blacklist=blacklist, patterns=patterns):
            kept.append(url)
        else:
            rejected += 1
            logger.debug(f"[IMAGES] Rejected {url}")
    logger.info(f"[IMAGES] Accepted {len(kept)} images, rejected {rejected}")
    return kept


def dedupe_preserving_order(urls: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            unique.append(url)
    return unique
