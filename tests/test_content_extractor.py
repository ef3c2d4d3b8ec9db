import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from content_extractor import (enhance_content, extract_body_from_html, extract_chapter_body,
                               extract_image_chapter_body, extract_image_urls, find_redirect_target,
                               keyword_image_filter, render_image_tags, resolve_redirects)
from errors import IMAGES_NOT_FOUND_MARKER, REDIRECT_CYCLE_MARKER, ExtractionMiss, RedirectCycle

PARAGRAPH = "The rain kept falling over the academy while the students hurried to class. "
CHAPTER_PAGE = (
    '<html><body><div class="chapter-content">'
    + "".join(f"<p>{PARAGRAPH}</p>" for _ in range(6))
    + '<script>trackReader();</script><div class="ads">BUY NOW</div>'
    + "</div></body></html>"
)


def _fetcher(pages):
    calls = []

    def fetch(url):
        calls.append(url)
        return pages[url]

    return fetch, calls


def test_meta_refresh_is_followed():
    fetch, calls = _fetcher({
        "https://s.com/c/1": '<meta http-equiv="Refresh" content="0; url=/c/1-real">',
        "https://s.com/c/1-real": CHAPTER_PAGE,
    })
    final_url, html = resolve_redirects(fetch, "https://s.com/c/1")

    assert final_url == "https://s.com/c/1-real"
    assert html == CHAPTER_PAGE
    assert calls == ["https://s.com/c/1", "https://s.com/c/1-real"]


def test_script_redirects_are_detected():
    assert find_redirect_target('<script>window.location.href = "/next";</script>', "https://s.com/a") == "https://s.com/next"
    assert find_redirect_target("<script>location.replace('https://t.com/b')</script>", "https://s.com/a") == "https://t.com/b"
    assert find_redirect_target(CHAPTER_PAGE, "https://s.com/a") is None


def test_navigation_helpers_are_not_redirects():
    helper = '<script>function goNext(){ window.location.href = "/c/2"; }</script>'
    click = "<script>btn.addEventListener('click', () => { location.replace('/c/2') });</script>"

    assert find_redirect_target(helper, "https://s.com/c/1") is None
    assert find_redirect_target(click, "https://s.com/c/1") is None


def test_load_time_script_redirects_are_followed():
    timer = '<script>setTimeout(function(){ window.location.href = "/c/1-real"; }, 0);</script>'
    guarded = '<script>if (document.referrer) { location.href = "/c/1-real"; }</script>'

    assert find_redirect_target(timer, "https://s.com/c/1") == "https://s.com/c/1-real"
    assert find_redirect_target(guarded, "https://s.com/c/1") == "https://s.com/c/1-real"


def test_chapter_page_with_next_helper_keeps_its_own_body():
    one = CHAPTER_PAGE.replace("The rain", "ONE: The rain")
    two = CHAPTER_PAGE.replace("The rain", "TWO drew his sword. The rain")
    nav = '<script>function goNext(){ window.location.href = "/novel/x/chapter-2"; }</script>'
    fetch, calls = _fetcher({
        "https://s.com/novel/x/chapter-1": one.replace("</body>", nav + "</body>"),
        "https://s.com/novel/x/chapter-2": two.replace("</body>", nav + "</body>"),
    })

    body = extract_chapter_body(fetch, "https://s.com/novel/x/chapter-1")

    assert "ONE" in body
    assert "TWO" not in body
    assert calls == ["https://s.com/novel/x/chapter-1"]


def test_top_level_redirect_ignored_when_page_has_a_body():
    page = CHAPTER_PAGE.replace("</body>", '<script>window.location.href = "/c/9";</script></body>')
    assert find_redirect_target(page, "https://s.com/c/1") is None


def test_redirect_cycle_raises():
    fetch, _ = _fetcher({
        "https://s.com/a": '<meta http-equiv="refresh" content="0;url=https://s.com/b">',
        "https://s.com/b": '<meta http-equiv="refresh" content="0;url=https://s.com/a">',
    })
    with pytest.raises(RedirectCycle):
        resolve_redirects(fetch, "https://s.com/a")


def test_redirect_cycle_becomes_marker_body():
    fetch, _ = _fetcher({
        "https://s.com/a": '<script>window.location = "https://s.com/b"</script>',
        "https://s.com/b": '<script>window.location = "https://s.com/a"</script>',
    })
    assert extract_chapter_body(fetch, "https://s.com/a") == REDIRECT_CYCLE_MARKER
    assert extract_image_chapter_body(fetch, "https://s.com/a") == REDIRECT_CYCLE_MARKER


def test_selector_body_drops_junk():
    body = extract_body_from_html(CHAPTER_PAGE)

    assert body.count("<p>") == 6
    assert "trackReader" not in body
    assert "BUY NOW" not in body


def test_density_fallback_picks_paragraph_block():
    html = (
        "<html><body><div class='wrapper'>"
        "<div class='sidebar'><a href='/'>Home</a></div>"
        "<div class='story'>" + "".join(f"<p>{PARAGRAPH * 2}</p>" for _ in range(8)) + "</div>"
        "</div></body></html>"
    )
    body = extract_body_from_html(html)

    assert body.count("<p>") == 8
    assert "Home" not in body


def test_short_page_is_extraction_miss():
    with pytest.raises(ExtractionMiss):
        extract_body_from_html("<html><body><div id='content'><p>Too short.</p></div></body></html>")


def test_enhance_wraps_marked_runs():
    out = enhance_content("<p>He saw [Level Up] (a note) and thought 'I must go' then *boom*.</p>")

    assert '<span class="smart-system">[Level Up]</span>' in out
    assert '<span class="smart-note">(a note)</span>' in out
    assert "<span class=\"smart-thought\">'I must go'</span>" in out
    assert '<span class="smart-sfx">*boom*</span>' in out


def test_enhance_leaves_markup_and_scripts_alone():
    out = enhance_content('<p><a href="/x(1)">link</a> don\'t panic</p><script>var a = [1];</script>')

    assert 'href="/x(1)"' in out
    assert "var a = [1];" in out
    assert "smart-thought" not in out
    assert "smart-system" not in out


def test_enhance_escapes_text_before_tagging():
    out = enhance_content("<p>5 &lt; 6 [Skill]</p>")
    assert "5 &lt; 6" in out
    assert "smart-system" in out


def test_extract_chapter_body_enhances():
    page = CHAPTER_PAGE.replace("</div></body>", "<p>[Quest Complete]</p></div></body>")
    fetch, _ = _fetcher({"https://s.com/c/1": page})

    body = extract_chapter_body(fetch, "https://s.com/c/1")

    assert '<span class="smart-system">[Quest Complete]</span>' in body


def test_image_source_priority_and_resolution():
    html = """
    <div id="readerarea">
      <img src="placeholder.gif" data-src="/img/p1.jpg">
      <img src="data:image/png;base64,AAAA">
      <img src="fallback.jpg" data-lazy-src="https://cdn.x.com/p2.png">
    </div>
    """
    assert extract_image_urls(html, "https://s.com/manga/x/1") == [
        "https://s.com/img/p1.jpg",
        "https://cdn.x.com/p2.png",
    ]


def test_keyword_image_filter():
    urls = ["https://a.com/logo.png", "https://cdn.a.com/p1.jpg", "https://a.com/file", "https://a.com/p2.webp"]
    assert keyword_image_filter(urls) == ["https://cdn.a.com/p1.jpg", "https://a.com/p2.webp"]


def test_image_chapter_body_renders_tags():
    html = '<div class="reading-content"><img src="/p/01.jpg"><img src="/site-logo.png"><img src="/p/02.jpg"></div>'
    fetch, _ = _fetcher({"https://s.com/c/1": html})

    body = extract_image_chapter_body(fetch, "https://s.com/c/1")

    assert body == render_image_tags(["https://s.com/p/01.jpg", "https://s.com/p/02.jpg"])
    assert body.count("<img") == 2
    assert 'loading="lazy"' in body


def test_image_chapter_without_images_gives_marker():
    fetch, _ = _fetcher({"https://s.com/c/1": "<html><body><p>Nothing</p></body></html>"})
    assert extract_image_chapter_body(fetch, "https://s.com/c/1") == IMAGES_NOT_FOUND_MARKER
