"""
Chapter content extraction

Flow for a chapter page:
1. Follow client-side redirects (meta refresh, literal location assignments)
2. Strip scripts, styles, iframes and ad containers
3. Take the first known content container with enough text
4. Otherwise pick the densest div/section/main block
5. Tag system messages, notes, thoughts and sound effects for styling
"""

import html as html_lib
import logging
import re
from typing import Callable, List, Optional, Sequence, Set, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString
from bs4.element import PreformattedString

from errors import (IMAGES_NOT_FOUND_MARKER, REDIRECT_CYCLE_MARKER,
                    ExtractionMiss, RedirectCycle)
from metadata_extractor import resolve_url

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 10

JUNK_SELECTORS = (
    'script, style, iframe, noscript, .ads, .ad-container, .adsbygoogle, .hidden, '
    '.announcement, .social-buttons, .chapter-nav, [id^="div-gpt-ad"]'
)

CONTENT_SELECTORS = [
    '#chapter-content',
    '.chapter-content',
    '#chr-content',
    '.chr-c',
    '.read-content',
    '.reading-content',
    '.chapter__content',
    '.content-inner',
    '#arrticle',
    '.text-left',
    '#content',
    '.entry-content',
    'article',
]

IMAGE_SELECTORS = [
    '#readerarea img',
    '.reading-content img',
    '.vung-doc img',
    '.container-chapter-reader img',
    '.chapter-content img',
    '.entry-content img',
    '.text-left img',
    'article img',
]

# Lazy-loading attributes win over the placeholder src
IMAGE_SOURCE_ATTRIBUTES = ('data-src', 'data-lazy-src', 'src')

# Generic image flow: cheap keyword screen, the strict classifier is for known hosts
GENERIC_IMAGE_SKIP = ('ads', 'logo', 'icon', 'avatar')
GENERIC_IMAGE_HINTS = ('.jpg', '.jpeg', '.png', '.webp', 'cdn', 'img', 'upload')

MIN_SELECTOR_TEXT = 200
MIN_DENSE_TEXT = 1000
MIN_DENSE_PARAGRAPHS = 3
MIN_DENSE_BREAKS = 5
MIN_BODY_TEXT = 300

META_REFRESH_URL_RE = re.compile(r'url\s*=\s*[\'"]?([^\'";]+)', re.I)
SCRIPT_REDIRECT_RES = [
    re.compile(r'(?:window\.|document\.)?location\.href\s*=\s*[\'"]([^\'"]+)[\'"]'),
    re.compile(r'(?:window\.|document\.)?location\.replace\(\s*[\'"]([^\'"]+)[\'"]\s*\)'),
    re.compile(r'(?:window|document)\.location\s*=\s*[\'"]([^\'"]+)[\'"]'),
]

# Blocks a page-load redirect may sit in: control flow, timers, load handlers
# and IIFEs. Named functions and click handlers only run on demand.
LOAD_TIME_BLOCK_RE = re.compile(
    r'(?:\b(?:if|while|for)\s*\(.*\)|\belse|\btry'
    r'|setTimeout\s*\(\s*(?:function\s*\(\s*\)|\(\s*\)\s*=>)'
    r'|onload\s*=\s*(?:function\s*\(\s*\)|\(\s*\)\s*=>)'
    r'|addEventListener\s*\(\s*[\'"](?:load|DOMContentLoaded)[\'"]\s*,\s*(?:function\s*\(\s*\)|\(\s*\)\s*=>)'
    r'|\(\s*function\s*\(\s*\))\s*$',
    re.S,
)
TIMER_ARROW_RE = re.compile(r'setTimeout\s*\(\s*\(\s*\)\s*=>\s*$')

SYSTEM_RE = re.compile(r'(\[[^\]]+\])')
NOTE_RE = re.compile(r'(\([^)]+\))')
THOUGHT_RE = re.compile(r"(^|\s|>)(')([^']{2,}?)(')(?=$|\s|<|[.,;:?!])")
SFX_RE = re.compile(r'(^|\s|>)(\*)([^*]+)(\*)(?=$|\s|<|[.,;:?!])')


def _runs_on_load(script: str, pos: int) -> bool:
    """True when the statement at ``pos`` runs as the script loads"""
    open_braces = []
    for i, ch in enumerate(script[:pos]):
        if ch == '{':
            open_braces.append(i)
        elif ch == '}' and open_braces:
            open_braces.pop()
    for brace in open_braces:
        header = script[max(0, brace - 200):brace]
        header = header.rsplit(';', 1)[-1].rsplit('}', 1)[-1]
        if not LOAD_TIME_BLOCK_RE.search(header):
            return False
    before = script[:pos].rstrip()
    if before.endswith('=>'):
        return bool(TIMER_ARROW_RE.search(before))
    return True


def _has_content_block(soup: BeautifulSoup) -> bool:
    for selector in CONTENT_SELECTORS:
        el = soup.select_one(selector)
        if el is not None and _text_length(el) > MIN_SELECTOR_TEXT:
            return True
    return False


def find_redirect_target(html: str, page_url: str) -> Optional[str]:
    """Return the target of a meta refresh or inline script redirect, if any.

    Script redirects count only on a page without a chapter body, and only
    when they run as the page loads; navigation helpers are ignored.
    """
    soup = BeautifulSoup(html, 'html.parser')
    for meta in soup.find_all('meta'):
        if (meta.get('http-equiv') or '').lower() != 'refresh':
            continue
        match = META_REFRESH_URL_RE.search(meta.get('content') or '')
        if match:
            return urljoin(page_url, match.group(1).strip())

    if _has_content_block(soup):
        return None
    for script in soup.find_all('script'):
        text = script.string or script.get_text() or ''
        for pattern in SCRIPT_REDIRECT_RES:
            for match in pattern.finditer(text):
                if _runs_on_load(text, match.start()):
                    return urljoin(page_url, match.group(1).strip())
    return None


def resolve_redirects(fetch: Callable[[str], str], url: str,
                      visited: Optional[Set[str]] = None,
                      html: Optional[str] = None) -> Tuple[str, str]:
    """Follow client-side redirects until a page stops redirecting.

    Returns (final_url, html). Raises RedirectCycle when a target was
    already visited or the hop limit is reached.
    """
    visited = set() if visited is None else visited
    current = url
    page = html
    while True:
        if current in visited or len(visited) >= MAX_REDIRECTS:
            raise RedirectCycle(current)
        visited.add(current)
        if page is None:
            page = fetch(current)
        target = find_redirect_target(page, current)
        if not target or target == current:
            return current, page
        logger.info(f"[CONTENT] Client-side redirect {current} -> {target}")
        current = target
        page = None


def _text_length(el) -> int:
    return len(el.get_text(strip=True))


def extract_body_from_html(html: str, selectors: Sequence[str] = CONTENT_SELECTORS) -> str:
    """Return the inner HTML of the chapter body. Raises ExtractionMiss."""
    soup = BeautifulSoup(html, 'html.parser')
    for junk in soup.select(JUNK_SELECTORS):
        junk.decompose()

    body = None
    for selector in selectors:
        el = soup.select_one(selector)
        if el is not None and _text_length(el) > MIN_SELECTOR_TEXT:
            logger.debug(f"[CONTENT] Matched content selector {selector!r}")
            body = el
            break

    if body is None:
        # Density fallback: direct <p>/<br> children mark the real article block
        best_score = 0
        for el in soup.find_all(['div', 'section', 'main']):
            if _text_length(el) <= MIN_DENSE_TEXT:
                continue
            paragraphs = len(el.find_all('p', recursive=False))
            breaks = len(el.find_all('br', recursive=False))
            if paragraphs <= MIN_DENSE_PARAGRAPHS and breaks <= MIN_DENSE_BREAKS:
                continue
            score = paragraphs + breaks
            if score > best_score:
                best_score = score
                body = el
        if body is not None:
            logger.debug(f"[CONTENT] Density fallback picked <{body.name}> (score {best_score})")

    if body is None or _text_length(body) < MIN_BODY_TEXT:
        raise ExtractionMiss("No content block with enough text")
    return body.decode_contents().strip()


def _tag_text(text: str) -> str:
    text = SYSTEM_RE.sub(r'<span class="smart-system">\1</span>', text)
    text = NOTE_RE.sub(r'<span class="smart-note">\1</span>', text)
    text = THOUGHT_RE.sub(r'\1<span class="smart-thought">\2\3\4</span>', text)
    text = SFX_RE.sub(r'\1<span class="smart-sfx">\2\3\4</span>', text)
    return text


def enhance_content(html: str) -> str:
    """Wrap bracketed, parenthetical, single-quoted and *starred* runs in styling spans.

    Only text nodes are rewritten; existing markup is left alone.
    """
    soup = BeautifulSoup(html, 'html.parser')
    for node in list(soup.find_all(string=True)):
        if isinstance(node, PreformattedString) or not isinstance(node, NavigableString):
            continue
        if node.parent is not None and node.parent.name in ('script', 'style'):
            continue
        escaped = html_lib.escape(str(node), quote=False)
        tagged = _tag_text(escaped)
        if tagged == escaped:
            continue
        fragment = BeautifulSoup(tagged, 'html.parser')
        node.replace_with(*list(fragment.contents))
    return str(soup)


def extract_chapter_body(fetch: Callable[[str], str], url: str) -> str:
    """Fetch a text chapter and return enhanced body markup.

    A redirect loop yields REDIRECT_CYCLE_MARKER instead of raising.
    """
    try:
        final_url, html = resolve_redirects(fetch, url)
    except RedirectCycle as e:
        logger.warning(f"[CONTENT] {e}")
        return REDIRECT_CYCLE_MARKER
    body = extract_body_from_html(html)
    logger.info(f"[CONTENT] Extracted {len(body)} chars from {final_url}")
    return enhance_content(body)


def extract_image_urls(html: str, page_url: str,
                       selectors: Sequence[str] = IMAGE_SELECTORS) -> List[str]:
    """Image URLs from the first selector that yields any, in document order"""
    soup = BeautifulSoup(html, 'html.parser')
    for junk in soup.select('script, style, iframe, .ads, .banner, noscript'):
        junk.decompose()

    for selector in selectors:
        imgs = soup.select(selector)
        if not imgs:
            continue
        found = []
        for img in imgs:
            src = ''
            for attr in IMAGE_SOURCE_ATTRIBUTES:
                src = (img.get(attr) or '').strip()
                if src:
                    break
            if not src or src.startswith('data:'):
                continue
            found.append(resolve_url(src, page_url))
        if found:
            logger.debug(f"[CONTENT] Image selector {selector!r} matched {len(found)} images")
            return found
    return []


def render_image_tags(urls: Sequence[str]) -> str:
    return ''.join(
        f'<img src="{html_lib.escape(url, quote=True)}" class="w-full object-contain" loading="lazy" />'
        for url in urls
    )


def keyword_image_filter(urls: Sequence[str]) -> List[str]:
    kept = []
    for url in urls:
        lowered = url.lower()
        if any(word in lowered for word in GENERIC_IMAGE_SKIP):
            continue
        if any(hint in lowered for hint in GENERIC_IMAGE_HINTS):
            kept.append(url)
    return kept


def extract_image_chapter_body(fetch: Callable[[str], str], url: str) -> str:
    """Fetch an image chapter and return only its <img> tags"""
    try:
        final_url, html = resolve_redirects(fetch, url)
    except RedirectCycle as e:
        logger.warning(f"[CONTENT] {e}")
        return REDIRECT_CYCLE_MARKER
    images = keyword_image_filter(extract_image_urls(html, final_url))
    if not images:
        return IMAGES_NOT_FOUND_MARKER
    logger.info(f"[CONTENT] Found {len(images)} images for chapter {final_url}")
    return render_image_tags(images)
