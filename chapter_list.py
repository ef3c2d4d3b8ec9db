"""
Chapter list crawling

Chapters are discovered in page order across a paginated listing. That order
is the only authority for reading order; numbers embedded in titles or URLs
are never used to sort.
"""

import logging
import re
import time
from typing import Callable, List, Optional, Sequence
from urllib.parse import urldefrag

from bs4 import BeautifulSoup, Tag

import settings
from metadata_extractor import resolve_url
from models import ChapterRef

logger = logging.getLogger(__name__)

# Elements are list items; the first anchor inside each one is the chapter link.
# Selectors that match anchors directly are used as-is.
LIST_ITEM_SELECTORS = [
    'ul.chapter-list li',
    '.chapter-list li',
    '#chapter-list li',
    '.list-chapter li',
    '#list-chapter .row',
    '.chapters li',
    '.list-chapters li',
    '.chapter-list a',
    '#chapter-list a',
    '.chapters a',
    '.list-chapters a',
]

NEXT_PAGE_SELECTORS = [
    'a[rel="next"]',
    'link[rel="next"]',
    '.pagination .next a',
    '.pagination a.next',
    '.pager .next a',
    'li.next a',
    '.nav-next a',
    '.pagination a:-soup-contains("Next")',
    '.pager a:-soup-contains("Next")',
    '.pagination a:-soup-contains("»")',
]

# Fallback when no list container matches
CHAPTER_HREF_HINTS = ('chapter', 'ch-')

RELATIVE_TIME_RE = re.compile(
    r'\b(?:\d+|an?|one)\s*(?:sec(?:ond)?|min(?:ute)?|h(?:ou)?r|day|week|month|year)s?\s+ago\b',
    re.IGNORECASE,
)
RELATIVE_TIME_SUFFIX_RE = re.compile(
    r'\s*\b(?:\d+|an?|one)\s*(?:sec(?:ond)?|min(?:ute)?|h(?:ou)?r|day|week|month|year)s?\s+ago\s*$',
    re.IGNORECASE,
)
BADGE_SUFFIX_RE = re.compile(r'\s*\b(?:NEW|HOT|FREE)\b!?\s*$')
LEADING_INDEX_RE = re.compile(r'^\d+(?:\s*[-–—:|)]\s*|\.\s+|\s+)(?=\S)')
NUMERIC_ONLY_RE = re.compile(r'^[\d\s.,:#-]+$')

MIN_TITLE_LENGTH = 5


def _clean_once(title: str) -> str:
    title = ' '.join(title.split())
    title = RELATIVE_TIME_SUFFIX_RE.sub('', title)
    title = BADGE_SUFFIX_RE.sub('', title)
    title = LEADING_INDEX_RE.sub('', title)
    return title.strip(' -–—:|')


def clean_title(raw: str) -> str:
    """Normalize a scraped chapter label.

    Drops a leading list index ("12 - Chapter Twelve"), relative-time
    suffixes ("3 hours ago"), trailing badges ("NEW") and extra whitespace.
    Applied until nothing changes, so clean_title is idempotent.
    """
    title = raw or ''
    while True:
        cleaned = _clean_once(title)
        if cleaned == title:
            return cleaned
        title = cleaned


def is_valid_title(title: str) -> bool:
    """Reject labels that are clearly parse misses rather than chapter titles"""
    if len(title) < MIN_TITLE_LENGTH:
        return False
    if NUMERIC_ONLY_RE.match(title):
        return False
    if RELATIVE_TIME_RE.search(title):
        return False
    return True


def normalize_link(url: str) -> str:
    return urldefrag(url)[0].rstrip('/')


def normalize_title_key(title: str) -> str:
    return ' '.join(title.split()).lower()


def _usable_href(href: str) -> bool:
    href = (href or '').strip()
    return bool(href) and not href.startswith(('javascript', '#', 'mailto:'))


def _text_of(el: Tag) -> str:
    return ' '.join(el.get_text(' ', strip=True).split())


def extract_chapter_refs(soup: BeautifulSoup, page_url: str,
                         item_selectors: Sequence[str] = LIST_ITEM_SELECTORS,
                         title_selectors: Sequence[str] = (),
                         date_selectors: Sequence[str] = (),
                         use_fallback: bool = True) -> List[ChapterRef]:
    """Extract chapter references from one listing page, in document order.

    Only the first anchor inside each list item is read, never the item
    text itself, so badge and timestamp siblings stay out of the title.
    """
    raw = []
    for selector in item_selectors:
        items = soup.select(selector)
        if not items:
            continue
        for item in items:
            anchor = item if item.name == 'a' else item.find('a', href=True)
            if anchor is None or not _usable_href(anchor.get('href')):
                continue
            title = ''
            for title_sel in title_selectors:
                title_el = anchor.select_one(title_sel) or item.select_one(title_sel)
                if title_el is not None:
                    title = _text_of(title_el)
                    if title:
                        break
            if not title:
                title = _text_of(anchor)
            date = None
            for date_sel in date_selectors:
                date_el = anchor.select_one(date_sel) or item.select_one(date_sel)
                if date_el is not None and _text_of(date_el):
                    date = _text_of(date_el)
                    break
            raw.append((title, anchor['href'], date))
        if raw:
            logger.debug(f"[CHAPTERS] Selector {selector!r} matched {len(raw)} entries")
            break

    if not raw and use_fallback:
        logger.debug(f"[CHAPTERS] No list container matched, scanning anchors on {page_url}")
        for a in soup.find_all('a', href=True):
            href = a['href']
            if _usable_href(href) and any(hint in href.lower() for hint in CHAPTER_HREF_HINTS):
                raw.append((_text_of(a), href, None))

    refs: List[ChapterRef] = []
    seen_links = set()
    seen_titles = set()
    for title_raw, href, date in raw:
        title = clean_title(title_raw)
        if not is_valid_title(title):
            logger.debug(f"[CHAPTERS] Rejected title {title_raw!r}")
            continue
        url = resolve_url(href, page_url)
        link_key = normalize_link(url)
        title_key = normalize_title_key(title)
        if link_key in seen_links or title_key in seen_titles:
            continue
        seen_links.add(link_key)
        seen_titles.add(title_key)
        refs.append(ChapterRef(title=title, url=url, date=date))
    return refs


def find_next_page(soup: BeautifulSoup, page_url: str,
                   selectors: Sequence[str] = NEXT_PAGE_SELECTORS) -> Optional[str]:
    for selector in selectors:
        try:
            el = soup.select_one(selector)
        except Exception as e:
            logger.debug(f"[CHAPTERS] Next selector {selector!r} failed: {e}")
            continue
        if el is not None and _usable_href(el.get('href')):
            return resolve_url(el['href'], page_url)
    return None


class ChapterListCrawler:
    """Follows "next page" links, collecting chapters until exhaustion or the page cap"""

    def __init__(self, fetch: Callable[[str], str],
                 item_selectors: Sequence[str] = LIST_ITEM_SELECTORS,
                 title_selectors: Sequence[str] = (),
                 date_selectors: Sequence[str] = (),
                 next_selectors: Sequence[str] = NEXT_PAGE_SELECTORS,
                 use_fallback: bool = True,
                 max_pages: Optional[int] = None,
                 page_delay: Optional[float] = None):
        self.fetch = fetch
        self.item_selectors = item_selectors
        self.title_selectors = title_selectors
        self.date_selectors = date_selectors
        self.next_selectors = next_selectors
        self.use_fallback = use_fallback
        self.max_pages = max_pages if max_pages is not None else settings.MAX_LIST_PAGES
        self.page_delay = settings.LIST_PAGE_DELAY if page_delay is None else page_delay

    def parse_page(self, html: str, page_url: str):
        soup = BeautifulSoup(html, 'html.parser')
        refs = extract_chapter_refs(
            soup, page_url,
            item_selectors=self.item_selectors,
            title_selectors=self.title_selectors,
            date_selectors=self.date_selectors,
            use_fallback=self.use_fallback,
        )
        return refs, find_next_page(soup, page_url, self.next_selectors)

    def crawl(self, start_url: str, first_page_html: Optional[str] = None) -> List[ChapterRef]:
        """Crawl a paginated listing starting at ``start_url``.

        A fetch failure on the first page propagates; later failures end
        pagination and keep what was already found.
        """
        chapters: List[ChapterRef] = []
        seen_links = set()
        seen_titles = set()
        visited = set()
        current = start_url
        page_count = 0

        while current and normalize_link(current) not in visited and page_count < self.max_pages:
            visited.add(normalize_link(current))
            page_count += 1
            logger.info(f"[CHAPTERS] Scraping page {page_count}: {current}")

            if page_count == 1 and first_page_html is not None:
                html = first_page_html
            elif page_count == 1:
                html = self.fetch(current)
            else:
                try:
                    html = self.fetch(current)
                except Exception as e:
                    logger.warning(f"[CHAPTERS] Failed to fetch page {current}: {e}")
                    break

            refs, next_url = self.parse_page(html, current)
            added = 0
            for ref in refs:
                link_key = normalize_link(ref.url)
                title_key = normalize_title_key(ref.title)
                if link_key in seen_links or title_key in seen_titles:
                    continue
                seen_links.add(link_key)
                seen_titles.add(title_key)
                chapters.append(ref)
                added += 1

            if added == 0:
                break
            if next_url and normalize_link(next_url) not in visited:
                current = next_url
                if self.page_delay:
                    time.sleep(self.page_delay)
            else:
                current = None

        if page_count >= self.max_pages and current:
            logger.warning(f"[CHAPTERS] Stopped at page cap ({self.max_pages}) for {start_url}")
        logger.info(f"[CHAPTERS] Found {len(chapters)} chapters across {page_count} page(s) for {start_url}")
        return chapters
