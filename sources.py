"""
Source adapters - one strategy per supported site shape

Supported sources:
- MangaDex (JSON API): paginated English feed, at-home image manifest
- ComicK (JSON API): scanlation groups per chapter, refilter by publisher
- Madara / Kagane WordPress manga theme
- AsuraComic
- Generic best-effort flow for every other novel or manhwa site
"""

import json
import logging
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote_plus, urlparse

from bs4 import BeautifulSoup

import settings
from chapter_list import ChapterListCrawler
from content_extractor import (extract_chapter_body, extract_image_chapter_body,
                               extract_image_urls, keyword_image_filter,
                               render_image_tags, resolve_redirects)
from errors import (IMAGES_NOT_FOUND_MARKER, REDIRECT_CYCLE_MARKER, ExtractionMiss,
                    RedirectCycle, ScraperError, TransportFailure, UnsupportedSource)
from image_filter import dedupe_preserving_order, filter_content_images
from metadata_extractor import extract_metadata, first_match, normalize_status, resolve_url
from models import ChapterRef, WorkMetadata
from transport import Transport, relay_name, site_origin

logger = logging.getLogger(__name__)


class SiteKind(Enum):
    GENERIC = 'generic'
    MANGADEX = 'mangadex'
    COMICK = 'comick'
    MADARA = 'madara'
    ASURA = 'asura'


# Checked in order, first match wins; anything else is GENERIC
SITE_DOMAINS = [
    (SiteKind.MANGADEX, ('mangadex.org',)),
    (SiteKind.COMICK, ('comick.io', 'comick.fun', 'comick.cc', 'comick.app', 'comick.art')),
    (SiteKind.ASURA, ('asuracomic.net', 'asurascans.com', 'asura.gg')),
    (SiteKind.MADARA, ('kagane.org', 'manhuaus.com', 'daotranslate.com')),
]


def detect_site_kind(url: str) -> SiteKind:
    """Pick the adapter for a URL from its domain"""
    domain = urlparse(url or '').netloc.lower().split(':')[0]
    for kind, domains in SITE_DOMAINS:
        if any(domain == d or domain.endswith('.' + d) for d in domains):
            return kind
    return SiteKind.GENERIC


def format_date(raw: Optional[str]) -> Optional[str]:
    """ISO timestamp -> 'Mar 5, 2024'"""
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        return raw
    return f"{dt.strftime('%b')} {dt.day}, {dt.year}"


def chapter_label(number: Optional[str], title: Optional[str], groups: Sequence[str] = ()) -> str:
    label = f"Ch. {number or 'Oneshot'}"
    if title:
        label += f" - {title}"
    if groups:
        label += f" [{', '.join(groups)}]"
    return label


class Source:
    """Shared capability set. Subclasses override what their site supports."""

    kind = SiteKind.GENERIC
    name = 'Generic'
    category = 'Novel'
    is_image_source = False
    default_base_url = ''

    def __init__(self, transport: Transport, base_url: Optional[str] = None):
        self.transport = transport
        self.base_url = site_origin(base_url or '') or self.default_base_url

    def search(self, query: str) -> List[WorkMetadata]:
        raise UnsupportedSource(f"{self.name} does not support search")

    def fetch_details(self, url: str) -> WorkMetadata:
        raise NotImplementedError

    def fetch_chapter_list(self, url: str) -> List[ChapterRef]:
        raise NotImplementedError

    def fetch_chapter_content(self, chapter_url: str) -> str:
        raise UnsupportedSource(f"{self.name} chapters are images, not text")

    def fetch_chapter_images(self, chapter_url: str) -> List[str]:
        raise UnsupportedSource(f"{self.name} chapters are text, not images")

    def fetch_chapter_body(self, chapter_url: str) -> str:
        """Chapter body ready to store: prose markup or a run of <img> tags"""
        if not self.is_image_source:
            return self.fetch_chapter_content(chapter_url)
        try:
            images = self.fetch_chapter_images(chapter_url)
        except RedirectCycle as e:
            logger.warning(f"[{self.name.upper()}] {e}")
            return REDIRECT_CYCLE_MARKER
        if not images:
            return IMAGES_NOT_FOUND_MARKER
        return render_image_tags(images)


# --- Generic ---

CHAPTERS_SUFFIX_RE = re.compile(r'/chapters/?(\?.*)?$')
INFO_LINK_HINTS = ('/novel/', '/book/')


class GenericSource(Source):
    """Best-effort flow for arbitrary markup: locator tables, paginated list crawl, density fallback"""

    def __init__(self, transport: Transport, base_url: Optional[str] = None, images: bool = False):
        super().__init__(transport, base_url)
        self.is_image_source = images
        self.category = 'Manhwa' if images else 'Novel'
        self.crawler = ChapterListCrawler(self.transport.fetch)

    @staticmethod
    def _find_info_link(soup: BeautifulSoup, page_url: str) -> Optional[str]:
        # Chapter pages link back to the work with a titled anchor
        for a in soup.select('a[title][href]'):
            if any(hint in a['href'] for hint in INFO_LINK_HINTS):
                return resolve_url(a['href'], page_url)
        return None

    @staticmethod
    def _find_list_link(soup: BeautifulSoup, page_url: str) -> Optional[str]:
        a = soup.select_one('a[href*="/chapters"]')
        return resolve_url(a['href'], page_url) if a is not None else None

    def _details_via(self, url: str, relay) -> Optional[WorkMetadata]:
        """One metadata attempt through a single relay. None when the relay returned nothing usable."""
        info_url = CHAPTERS_SUFFIX_RE.sub('', url)
        user_list = info_url != url
        list_url = url

        html = self.transport.fetch_document(info_url, relay)
        if html is None:
            return None
        page_url = info_url
        soup = BeautifulSoup(html, 'html.parser')
        meta = extract_metadata(soup, info_url)

        # Probably a chapter page; hop to the work's own page once
        if not meta['title'] or not meta['cover_url']:
            info_link = self._find_info_link(soup, info_url)
            if info_link and info_link != info_url:
                logger.info(f"[GENERIC] Metadata incomplete, following info link {info_link}")
                fallback_html = self.transport.fetch_document(info_link, relay)
                if fallback_html:
                    html, page_url = fallback_html, info_link
                    soup = BeautifulSoup(html, 'html.parser')
                    for key, value in extract_metadata(soup, info_link).items():
                        if value:
                            meta[key] = value
                    if not user_list:
                        list_url = info_link

        if not meta['title']:
            raise ExtractionMiss(f"No title on {info_url} via {relay_name(relay)}")

        if not user_list:
            list_link = self._find_list_link(soup, page_url)
            if list_link:
                list_url = list_link

        first_page = html if list_url == page_url else None
        chapters = self.crawler.crawl(list_url, first_page_html=first_page)
        return WorkMetadata(
            title=meta['title'],
            author=meta['author'] or 'Unknown',
            cover_url=meta['cover_url'],
            summary=meta['summary'],
            status=meta['status'] or 'Ongoing',
            category=self.category,
            chapters=tuple(chapters),
            source_url=info_url,
            source_id=info_url,
        )

    def fetch_details(self, url: str) -> WorkMetadata:
        """Try each relay in turn until one yields a titled page with chapters"""
        titled = None
        last_error = None
        for relay in self.transport.candidates():
            try:
                work = self._details_via(url, relay)
            except ScraperError as e:
                logger.warning(f"[GENERIC] Attempt via {relay_name(relay)} failed: {e}")
                last_error = e
                continue
            if work is None:
                continue
            if work.chapters:
                logger.info(f"[GENERIC] Found \"{work.title}\" with {len(work.chapters)} chapters "
                            f"via {relay_name(relay)}")
                return work
            titled = titled or work

        if titled is not None:
            logger.warning(f"[GENERIC] \"{titled.title}\" has no chapters on any relay")
            return titled
        if last_error is not None:
            raise last_error
        raise TransportFailure(
            url,
            f"Failed to fetch {url} through any relay. The site may be down or blocking requests.",
            attempts=len(self.transport.candidates()),
        )

    def fetch_chapter_list(self, url: str) -> List[ChapterRef]:
        if CHAPTERS_SUFFIX_RE.search(url):
            return self.crawler.crawl(url)
        html = self.transport.fetch(url)
        list_link = self._find_list_link(BeautifulSoup(html, 'html.parser'), url)
        if list_link and list_link != url:
            return self.crawler.crawl(list_link)
        return self.crawler.crawl(url, first_page_html=html)

    def fetch_chapter_content(self, chapter_url: str) -> str:
        return extract_chapter_body(self.transport.fetch, chapter_url)

    def fetch_chapter_images(self, chapter_url: str) -> List[str]:
        final_url, html = resolve_redirects(self.transport.fetch, chapter_url)
        return keyword_image_filter(extract_image_urls(html, final_url))

    def fetch_chapter_body(self, chapter_url: str) -> str:
        if self.is_image_source:
            return extract_image_chapter_body(self.transport.fetch, chapter_url)
        return self.fetch_chapter_content(chapter_url)


# --- MangaDex ---

MANGADEX_API = 'https://api.mangadex.org'
MANGADEX_SITE = 'https://mangadex.org'
MANGADEX_COVERS = 'https://uploads.mangadex.org/covers'
MANGADEX_FEED_LIMIT = 500
UUID_PATTERN = r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}'
MANGADEX_TITLE_RE = re.compile(rf'/title/({UUID_PATTERN})', re.I)
MANGADEX_CHAPTER_RE = re.compile(rf'/chapter/({UUID_PATTERN})', re.I)
MANGADEX_STATUS = {
    'ongoing': 'Ongoing',
    'completed': 'Completed',
    'hiatus': 'Hiatus',
    'cancelled': 'Cancelled',
}


def _localized(values: Dict[str, str]) -> str:
    """English when present, else the first available language"""
    values = values or {}
    return values.get('en') or next(iter(values.values()), '')


class MangaDexSource(Source):
    kind = SiteKind.MANGADEX
    name = 'MangaDex'
    category = 'Manhwa'
    is_image_source = True
    default_base_url = MANGADEX_SITE

    @staticmethod
    def manga_id(url: str) -> str:
        match = MANGADEX_TITLE_RE.search(url)
        if match:
            return match.group(1).lower()
        if re.fullmatch(UUID_PATTERN, url.strip(), re.I):
            return url.strip().lower()
        raise ExtractionMiss(f"No MangaDex title id in {url}")

    def _to_metadata(self, manga: Dict[str, Any]) -> WorkMetadata:
        manga_id = manga.get('id', '')
        attrs = manga.get('attributes') or {}
        cover_url = ''
        author = 'Unknown Author'
        for rel in manga.get('relationships') or []:
            rel_attrs = rel.get('attributes') or {}
            if rel.get('type') == 'cover_art' and rel_attrs.get('fileName') and not cover_url:
                cover_url = f"{MANGADEX_COVERS}/{manga_id}/{rel_attrs['fileName']}.256.jpg"
            elif rel.get('type') == 'author' and rel_attrs.get('name') and author == 'Unknown Author':
                author = rel_attrs['name']
        status = attrs.get('status') or 'ongoing'
        return WorkMetadata(
            title=_localized(attrs.get('title')) or 'Unknown Title',
            author=author,
            cover_url=cover_url,
            summary=_localized(attrs.get('description')),
            status=MANGADEX_STATUS.get(status, status.capitalize()),
            category=self.category,
            source_url=f"{MANGADEX_SITE}/title/{manga_id}",
            source_id=manga_id,
        )

    def search(self, query: str) -> List[WorkMetadata]:
        params = [
            ('title', query),
            ('limit', 20),
            ('includes[]', 'cover_art'),
            ('includes[]', 'author'),
            ('contentRating[]', 'safe'),
            ('contentRating[]', 'suggestive'),
            ('contentRating[]', 'erotica'),
            ('order[relevance]', 'desc'),
        ]
        data = self.transport.fetch_json(f"{MANGADEX_API}/manga", params=params)
        results = [self._to_metadata(manga) for manga in data.get('data') or []]
        logger.info(f"[MANGADEX] Search {query!r} returned {len(results)} results")
        return results

    def fetch_details(self, url: str) -> WorkMetadata:
        manga_id = self.manga_id(url)
        data = self.transport.fetch_json(
            f"{MANGADEX_API}/manga/{manga_id}",
            params=[('includes[]', 'cover_art'), ('includes[]', 'author')],
        )
        if not data.get('data'):
            raise ExtractionMiss(f"MangaDex returned no manga for {manga_id}")
        work = self._to_metadata(data['data'])
        return work.with_chapters(self.fetch_chapter_list(url))

    @staticmethod
    def _to_chapter_ref(chapter: Dict[str, Any]) -> ChapterRef:
        attrs = chapter.get('attributes') or {}
        groups = tuple(
            rel['attributes']['name']
            for rel in chapter.get('relationships') or []
            if rel.get('type') == 'scanlation_group' and (rel.get('attributes') or {}).get('name')
        )
        return ChapterRef(
            title=chapter_label(attrs.get('chapter'), attrs.get('title'), groups[:1]),
            url=f"{MANGADEX_SITE}/chapter/{chapter['id']}",
            date=format_date(attrs.get('publishAt')),
            groups=groups,
        )

    def fetch_chapter_list(self, url: str) -> List[ChapterRef]:
        """English chapters in ascending chapter order, following offset pagination to the total"""
        manga_id = self.manga_id(url)
        chapters: List[ChapterRef] = []
        offset = 0
        while True:
            data = self.transport.fetch_json(
                f"{MANGADEX_API}/manga/{manga_id}/feed",
                params=[
                    ('translatedLanguage[]', 'en'),
                    ('order[chapter]', 'asc'),
                    ('limit', MANGADEX_FEED_LIMIT),
                    ('offset', offset),
                    ('includes[]', 'scanlation_group'),
                ],
            )
            batch = data.get('data') or []
            for chapter in batch:
                if (chapter.get('attributes') or {}).get('externalUrl'):
                    # Hosted off-site, no pages on the at-home servers
                    logger.debug(f"[MANGADEX] Skipping external chapter {chapter.get('id')}")
                    continue
                chapters.append(self._to_chapter_ref(chapter))
            offset += len(batch)
            if not batch or offset >= data.get('total', 0):
                break
        logger.info(f"[MANGADEX] Found {len(chapters)} chapters for {manga_id}")
        return chapters

    def fetch_chapter_images(self, chapter_url: str) -> List[str]:
        match = MANGADEX_CHAPTER_RE.search(chapter_url)
        chapter_id = match.group(1) if match else chapter_url.strip().rstrip('/').rsplit('/', 1)[-1]
        data = self.transport.fetch_json(f"{MANGADEX_API}/at-home/server/{chapter_id}")
        base_url = data.get('baseUrl')
        chapter = data.get('chapter') or {}
        if not base_url or not chapter.get('hash'):
            return []
        # Manifest order is reading order
        return [f"{base_url}/data/{chapter['hash']}/{page}" for page in chapter.get('data') or []]


# --- ComicK ---

COMICK_API = 'https://api.comick.fun'
COMICK_SITE = 'https://comick.io'
COMICK_IMAGES = 'https://meo.comick.pictures'
COMICK_SLUG_RE = re.compile(r'/comic/([^/?#]+)')
COMICK_CHAPTER_RE = re.compile(r'/comic/[^/?#]+/([0-9A-Za-z]+)')
COMICK_STATUS = {1: 'Ongoing', 2: 'Completed', 3: 'Cancelled', 4: 'Hiatus'}
COMICK_PAGE_SIZE = 300


class ComickSource(Source):
    """ComicK API. One comic can carry several independent group releases."""

    kind = SiteKind.COMICK
    name = 'ComicK'
    category = 'Manhwa'
    is_image_source = True
    default_base_url = COMICK_SITE

    @staticmethod
    def slug(url: str) -> str:
        match = COMICK_SLUG_RE.search(url)
        if not match:
            raise ExtractionMiss(f"No ComicK slug in {url}")
        return match.group(1)

    @staticmethod
    def _cover(comic: Dict[str, Any]) -> str:
        covers = comic.get('md_covers') or []
        return f"{COMICK_IMAGES}/{covers[0]['b2key']}" if covers and covers[0].get('b2key') else ''

    def search(self, query: str) -> List[WorkMetadata]:
        data = self.transport.fetch_json(f"{COMICK_API}/v1.0/search", params={'q': query, 'limit': 20})
        results = []
        for comic in data or []:
            if not comic.get('slug'):
                continue
            results.append(WorkMetadata(
                title=comic.get('title') or comic['slug'],
                cover_url=self._cover(comic),
                summary=comic.get('desc') or '',
                status=COMICK_STATUS.get(comic.get('status'), 'Ongoing'),
                category=self.category,
                source_url=f"{COMICK_SITE}/comic/{comic['slug']}",
                source_id=comic.get('hid', ''),
            ))
        logger.info(f"[COMICK] Search {query!r} returned {len(results)} results")
        return results

    def _fetch_comic(self, slug: str) -> Dict[str, Any]:
        data = self.transport.fetch_json(f"{COMICK_API}/comic/{slug}/")
        if not data or not data.get('comic'):
            raise ExtractionMiss(f"ComicK returned no comic for {slug}")
        return data

    def _fetch_chapters(self, hid: str, slug: str) -> List[ChapterRef]:
        chapters: List[ChapterRef] = []
        page = 1
        while page <= settings.MAX_LIST_PAGES:
            data = self.transport.fetch_json(
                f"{COMICK_API}/comic/{hid}/chapters",
                params={'lang': 'en', 'page': page, 'limit': COMICK_PAGE_SIZE, 'chap-order': 1},
            )
            batch = data.get('chapters') or []
            for chapter in batch:
                groups = tuple(g for g in chapter.get('group_name') or [] if g)
                number = chapter.get('chap')
                chapters.append(ChapterRef(
                    title=chapter_label(number, chapter.get('title'), groups),
                    url=f"{COMICK_SITE}/comic/{slug}/{chapter['hid']}-chapter-{number or 'oneshot'}-en",
                    date=format_date(chapter.get('created_at')),
                    groups=groups,
                ))
            if not batch or len(chapters) >= data.get('total', 0):
                break
            page += 1
        logger.info(f"[COMICK] Found {len(chapters)} chapters for {slug}")
        return chapters

    @staticmethod
    def publishers_of(chapters: Sequence[ChapterRef]) -> List[str]:
        """Every group that released at least one chapter, in discovery order"""
        seen = []
        for ref in chapters:
            for group in ref.groups:
                if group not in seen:
                    seen.append(group)
        return seen

    def fetch_details(self, url: str) -> WorkMetadata:
        slug = self.slug(url)
        data = self._fetch_comic(slug)
        comic = data['comic']
        chapters = self._fetch_chapters(comic['hid'], slug)
        authors = [a.get('name') for a in data.get('authors') or [] if a.get('name')]
        return WorkMetadata(
            title=comic.get('title') or slug,
            author=', '.join(authors) or 'Unknown',
            cover_url=self._cover(comic),
            summary=comic.get('desc') or '',
            status=COMICK_STATUS.get(comic.get('status'), 'Ongoing'),
            category=self.category,
            chapters=tuple(chapters),
            publishers=tuple(self.publishers_of(chapters)),
            source_url=f"{COMICK_SITE}/comic/{slug}",
            source_id=comic['hid'],
        )

    def fetch_chapter_list(self, url: str) -> List[ChapterRef]:
        slug = self.slug(url)
        comic = self._fetch_comic(slug)['comic']
        return self._fetch_chapters(comic['hid'], slug)

    def filter_by_publisher(self, work: WorkMetadata, publisher: Optional[str]) -> WorkMetadata:
        """Re-query the chapter list and keep a single group's release.

        One chapter per chapter number is kept, in discovery order. A None
        publisher restores the unfiltered list.
        """
        slug = self.slug(work.source_url)
        chapters = self._fetch_chapters(work.source_id or self._fetch_comic(slug)['comic']['hid'], slug)
        if publisher is None:
            return work.with_chapters(chapters, selected_publisher=None,
                                      publishers=tuple(self.publishers_of(chapters)))
        selected = []
        seen_labels = set()
        for ref in chapters:
            if publisher not in ref.groups:
                continue
            number = ref.title.split(' - ')[0].split(' [')[0]
            if number in seen_labels:
                continue
            seen_labels.add(number)
            selected.append(ref)
        logger.info(f"[COMICK] {len(selected)} of {len(chapters)} chapters released by {publisher}")
        return work.with_chapters(selected, selected_publisher=publisher)

    def fetch_chapter_images(self, chapter_url: str) -> List[str]:
        match = COMICK_CHAPTER_RE.search(chapter_url)
        if not match:
            raise ExtractionMiss(f"No ComicK chapter id in {chapter_url}")
        data = self.transport.fetch_json(f"{COMICK_API}/chapter/{match.group(1)}/")
        images = (data.get('chapter') or {}).get('md_images') or []
        return [f"{COMICK_IMAGES}/{img['b2key']}" for img in images if img.get('b2key')]


# --- Madara / Kagane ---

MADARA_LIST_ITEMS = [
    '#chapterlist li',
    'li.wp-manga-chapter',
    '.eph-num',
    '.listing-chapters_wrap li',
    '.version-chap li',
    'ul.main li',
]
MADARA_CHAPTER_TITLES = ['.chapternum', '.chapter-manhwa-title']
MADARA_CHAPTER_DATES = ['.chapterdate', '.chapter-release-date']
MADARA_IMAGES = [
    '#readerarea img',
    '.reading-content img',
    '.page-break img',
    'img.wp-manga-chapter-img',
]
MADARA_SEARCH_RESULTS = ['.bsx a', '.c-tabs-item__content .post-title a', '.post-title h3 a']


class MadaraSource(Source):
    """WordPress manga themes: newest-first chapter list, images under the reader container"""

    kind = SiteKind.MADARA
    name = 'Madara'
    category = 'Manhwa'
    is_image_source = True
    default_base_url = 'https://kagane.org'

    def __init__(self, transport: Transport, base_url: Optional[str] = None):
        super().__init__(transport, base_url)
        self.crawler = ChapterListCrawler(
            self.transport.fetch,
            item_selectors=MADARA_LIST_ITEMS,
            title_selectors=MADARA_CHAPTER_TITLES,
            date_selectors=MADARA_CHAPTER_DATES,
            use_fallback=False,
        )

    def search(self, query: str) -> List[WorkMetadata]:
        html = self.transport.fetch(f"{self.base_url}/?s={quote_plus(query)}&post_type=wp-manga")
        soup = BeautifulSoup(html, 'html.parser')
        results = []
        seen = set()
        for selector in MADARA_SEARCH_RESULTS:
            for a in soup.select(selector):
                url = resolve_url(a.get('href', ''), self.base_url)
                title = (a.get('title') or a.get_text(' ', strip=True)).strip()
                if not url or not title or url in seen:
                    continue
                seen.add(url)
                img = a.find('img')
                cover = (img.get('data-src') or img.get('src') or '') if img is not None else ''
                results.append(WorkMetadata(title=title, cover_url=resolve_url(cover, self.base_url),
                                            category=self.category, source_url=url, source_id=url))
            if results:
                break
        return results

    def _chapters(self, url: str, html: Optional[str] = None) -> List[ChapterRef]:
        chapters = self.crawler.crawl(url, first_page_html=html)
        chapters.reverse()
        return chapters

    def fetch_details(self, url: str) -> WorkMetadata:
        html = self.transport.fetch(url)
        meta = extract_metadata(BeautifulSoup(html, 'html.parser'), url)
        if not meta['title']:
            raise ExtractionMiss(f"No title found on {url}")
        chapters = self._chapters(url, html)
        logger.info(f"[MADARA] Found \"{meta['title']}\" with {len(chapters)} chapters")
        return WorkMetadata(
            title=meta['title'],
            author=meta['author'] or 'Unknown',
            cover_url=meta['cover_url'],
            summary=meta['summary'],
            status=meta['status'] or 'Ongoing',
            category=self.category,
            chapters=tuple(chapters),
            source_url=url,
            source_id=url,
        )

    def fetch_chapter_list(self, url: str) -> List[ChapterRef]:
        return self._chapters(url)

    def fetch_chapter_images(self, chapter_url: str) -> List[str]:
        final_url, html = resolve_redirects(self.transport.fetch, chapter_url)
        found = dedupe_preserving_order(extract_image_urls(html, final_url, MADARA_IMAGES))
        images = filter_content_images(found)
        if found and not images:
            logger.warning(f"[MADARA] All {len(found)} images on {final_url} were rejected")
        return images


# --- AsuraComic ---

ASURA_BASE = 'https://asuracomic.net'
ASURA_MEDIA = 'https://gg.asuracomic.net/storage/media'
ASURA_IMAGE_RE = re.compile(r'https?://[^"\'\s\\]+\.(?:jpg|jpeg|png|webp|avif)', re.I)
ASURA_UI_WORDS = ('logo', 'icon', 'thumb', 'avatar', 'cover')


class AsuraSource(Source):
    kind = SiteKind.ASURA
    name = 'AsuraComic'
    category = 'Manhwa'
    is_image_source = True
    default_base_url = ASURA_BASE

    def __init__(self, transport: Transport, base_url: Optional[str] = None):
        super().__init__(transport, base_url)
        # Series page has no pagination
        self.crawler = ChapterListCrawler(
            self.transport.fetch,
            item_selectors=['div.overflow-y-auto a'],
            title_selectors=['h3.text-sm'],
            date_selectors=['h3.text-xs'],
            next_selectors=(),
            use_fallback=False,
            max_pages=1,
        )

    def _absolute(self, href: str) -> str:
        if href.startswith('http'):
            return href
        return f"{self.base_url}{'' if href.startswith('/') else '/'}{href}"

    def search(self, query: str) -> List[WorkMetadata]:
        html = self.transport.fetch(f"{self.base_url}/series?page=1&name={quote_plus(query)}")
        soup = BeautifulSoup(html, 'html.parser')
        results = []
        for a in soup.select('div.grid a[href*="series/"]'):
            title_el = a.select_one('span.font-bold')
            title = title_el.get_text(strip=True) if title_el is not None else ''
            if not title:
                continue
            url = self._absolute(a['href'])
            img = a.find('img')
            status_el = a.select_one('span.status')
            results.append(WorkMetadata(
                title=title,
                author='Asura Scans',
                cover_url=img.get('src', '') if img is not None else '',
                status=normalize_status(status_el.get_text(strip=True)) if status_el is not None else 'Ongoing',
                category=self.category,
                source_url=url,
                source_id=url,
            ))
        logger.info(f"[ASURA] Search {query!r} returned {len(results)} results")
        return results

    @staticmethod
    def _labelled_value(soup: BeautifulSoup, selector: str, label: str) -> str:
        """Value of a two-<h3> block (label, value) whose label contains ``label``"""
        for block in soup.select(selector):
            headings = block.find_all('h3')
            if len(headings) >= 2 and label in headings[0].get_text(strip=True):
                return headings[-1].get_text(' ', strip=True)
        return ''

    def _chapters(self, url: str, html: Optional[str] = None) -> List[ChapterRef]:
        # Relative hrefs ("slug/chapter/12") resolve against /series/
        chapters = self.crawler.crawl(url.rstrip('/'), first_page_html=html)
        chapters.reverse()
        return chapters

    def fetch_details(self, url: str) -> WorkMetadata:
        html = self.transport.fetch(url)
        soup = BeautifulSoup(html, 'html.parser')
        title = first_match(soup, [('span.text-xl.font-bold', None)])
        if not title:
            title = extract_metadata(soup, url)['title'].split(' - ')[0].strip()
        if not title:
            raise ExtractionMiss(f"No title found on {url}")
        status = self._labelled_value(soup, 'div[class*="343434"]', 'Status')
        chapters = self._chapters(url, html)
        logger.info(f"[ASURA] Found \"{title}\" with {len(chapters)} chapters")
        return WorkMetadata(
            title=title,
            author=self._labelled_value(soup, '.grid div', 'Author') or 'Unknown',
            cover_url=resolve_url(first_match(soup, [('img[alt="poster"]', 'src')]), url),
            summary=first_match(soup, [('span.font-medium.text-sm p', None)])[:2000],
            status=normalize_status(status) if status else 'Ongoing',
            category=self.category,
            chapters=tuple(chapters),
            source_url=url,
            source_id=url,
        )

    def fetch_chapter_list(self, url: str) -> List[ChapterRef]:
        return self._chapters(url)

    @staticmethod
    def _next_data_images(soup: BeautifulSoup) -> List[str]:
        script = soup.find('script', id='__NEXT_DATA__')
        if script is None or not script.string:
            return []
        try:
            data = json.loads(script.string)
        except ValueError as e:
            logger.debug(f"[ASURA] Unreadable __NEXT_DATA__: {e}")
            return []
        props = (data.get('props') or {}).get('pageProps') or {}
        raw = (props.get('chapter') or {}).get('images') or (props.get('data') or {}).get('images') or []
        images = []
        for item in raw:
            src = item.get('url', '') if isinstance(item, dict) else str(item)
            if not src:
                continue
            images.append(src if src.startswith('http') else f"{ASURA_MEDIA}/{src.lstrip('/')}")
        return images

    def fetch_chapter_images(self, chapter_url: str) -> List[str]:
        final_url, html = resolve_redirects(self.transport.fetch, chapter_url)

        hydrated = self._next_data_images(BeautifulSoup(html, 'html.parser'))
        if hydrated:
            # Hydration payload is in reading order; only drop the obvious non-pages
            images = [u for u in dedupe_preserving_order(hydrated)
                      if not u.lower().endswith('.gif') and 'logo' not in u.lower()]
            logger.info(f"[ASURA] {len(images)} images from __NEXT_DATA__ for {final_url}")
            return images

        # Images live in hydration scripts, so scan the raw HTML
        candidates = [
            u for u in dedupe_preserving_order(ASURA_IMAGE_RE.findall(html))
            if 'gg.asuracomic.net' in u and not any(w in u.lower() for w in ASURA_UI_WORDS)
        ]
        images = filter_content_images(candidates)
        logger.info(f"[ASURA] {len(images)} of {len(candidates)} scraped images kept for {final_url}")
        return images


SOURCE_CLASSES = {
    SiteKind.MANGADEX: MangaDexSource,
    SiteKind.COMICK: ComickSource,
    SiteKind.MADARA: MadaraSource,
    SiteKind.ASURA: AsuraSource,
}


def source_for_kind(kind: SiteKind, transport: Optional[Transport] = None,
                    base_url: Optional[str] = None, images: bool = False) -> Source:
    transport = transport or Transport()
    if kind is SiteKind.GENERIC:
        return GenericSource(transport, base_url, images=images)
    return SOURCE_CLASSES[kind](transport, base_url)


def get_source(url: str, transport: Optional[Transport] = None, images: bool = False) -> Source:
    """Adapter for ``url``. ``images`` selects the image flow for generic sites."""
    kind = detect_site_kind(url)
    logger.debug(f"[SOURCES] {url} -> {kind.value}")
    return source_for_kind(kind, transport, base_url=url, images=images)
