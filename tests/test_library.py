import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from library import Library
from models import ChapterRecord, NovelRecord


def _novel(**changes):
    data = dict(id="mage-academy", title="Mage Academy", source_url="https://s.com/novel/mage-academy")
    data.update(changes)
    return NovelRecord(**data)


def _chapter(n, **changes):
    data = dict(
        id=f"mage-academy-ch-{n + 1}",
        novel_id="mage-academy",
        title=f"Chapter {n + 1}",
        order_index=n,
        source_url=f"https://s.com/c/chapter-{n + 1}",
    )
    data.update(changes)
    return ChapterRecord(**data)


def test_add_and_get_novel(tmp_path):
    library = Library(tmp_path)
    saved = library.add_novel(_novel(author="Jane Doe"))

    assert saved.created_at
    assert library.get_novel("mage-academy").author == "Jane Doe"
    assert library.get_novel("missing") is None
    assert (tmp_path / "novels" / "mage-academy.json").exists()


def test_readding_novel_keeps_progress_and_creation_time(tmp_path):
    library = Library(tmp_path)
    first = library.add_novel(_novel())
    library.add_chapter(_chapter(0))
    library.mark_chapter_read("mage-academy", "mage-academy-ch-1")

    updated = library.add_novel(_novel(summary="New blurb"))

    assert updated.created_at == first.created_at
    assert updated.last_read_chapter_id == "mage-academy-ch-1"
    assert updated.summary == "New blurb"
    assert len(library.get_chapters("mage-academy")) == 1


def test_get_novels_filters_by_category(tmp_path):
    library = Library(tmp_path)
    library.add_novel(_novel())
    library.add_novel(_novel(id="solo", title="Solo", category="Manhwa"))

    assert [n.id for n in library.get_novels()] == ["mage-academy", "solo"]
    assert [n.id for n in library.get_novels("Manhwa")] == ["solo"]


def test_chapter_requires_known_novel(tmp_path):
    with pytest.raises(KeyError):
        Library(tmp_path).add_chapter(_chapter(0))


def test_chapter_content_round_trip(tmp_path):
    library = Library(tmp_path)
    library.add_novel(_novel())

    record = library.add_chapter(_chapter(0), "<p>Hello</p>")

    assert record.has_content
    assert library.get_chapter_content("mage-academy", record.id) == "<p>Hello</p>"
    assert library.get_chapter_content("mage-academy", "nope") is None


def test_readding_chapter_keeps_read_flag_and_body(tmp_path):
    library = Library(tmp_path)
    library.add_novel(_novel())
    library.add_chapter(_chapter(0), "<p>Body</p>")
    library.mark_chapter_read("mage-academy", "mage-academy-ch-1")

    record = library.add_chapter(_chapter(0, title="Chapter 1 (edited)"))

    assert record.is_read
    assert record.has_content
    assert record.title == "Chapter 1 (edited)"
    assert len(library.get_chapters("mage-academy")) == 1


def test_new_url_never_overwrites_chapter_with_same_id(tmp_path):
    library = Library(tmp_path)
    library.add_novel(_novel())
    library.add_chapter(_chapter(0), "<p>Original</p>")
    library.mark_chapter_read("mage-academy", "mage-academy-ch-1")

    moved = library.add_chapter(_chapter(0, source_url="https://s.com/c/chapter-1b"), "<p>Other</p>")
    again = library.add_chapter(_chapter(0, title="Chapter 1 (renamed)"))

    assert moved.id == "mage-academy-ch-1-2"
    assert again.id == "mage-academy-ch-1"
    assert again.is_read
    assert library.get_chapter_content("mage-academy", "mage-academy-ch-1") == "<p>Original</p>"
    assert library.get_chapter_content("mage-academy", moved.id) == "<p>Other</p>"
    assert len(library.get_chapters("mage-academy")) == 2


def test_is_chapter_exists_is_keyed_by_source_url(tmp_path):
    library = Library(tmp_path)
    library.add_novel(_novel())
    library.add_chapter(_chapter(0))

    assert library.is_chapter_exists("mage-academy", "https://s.com/c/chapter-1")
    assert not library.is_chapter_exists("mage-academy", "https://s.com/c/chapter-2")
    assert not library.is_chapter_exists("other", "https://s.com/c/chapter-1")


def test_chapters_come_back_in_order_index_order(tmp_path):
    library = Library(tmp_path)
    library.add_novel(_novel())
    assert library.add_chapters([_chapter(2), _chapter(0), _chapter(1)]) == 3

    assert [c.order_index for c in library.get_chapters("mage-academy")] == [0, 1, 2]


def test_store_survives_reopen(tmp_path):
    library = Library(tmp_path)
    library.add_novel(_novel())
    library.add_chapter(_chapter(0), "<p>Persisted</p>")

    reopened = Library(tmp_path)

    assert reopened.get_novel("mage-academy").title == "Mage Academy"
    assert reopened.get_chapter_content("mage-academy", "mage-academy-ch-1") == "<p>Persisted</p>"
    index = json.loads((tmp_path / "novels" / "mage-academy.json").read_text(encoding="utf-8"))
    assert index["chapters"][0]["content_path"] == str(Path("chapters") / "mage-academy" / "mage-academy-ch-1.html")


def test_corrupted_index_is_ignored(tmp_path):
    library = Library(tmp_path)
    (tmp_path / "novels" / "broken.json").write_text("{not json", encoding="utf-8")

    assert library.get_novel("broken") is None
    assert library.get_novels() == []


def test_delete_novel_removes_bodies(tmp_path):
    library = Library(tmp_path)
    library.add_novel(_novel())
    library.add_chapter(_chapter(0), "<p>Body</p>")

    assert library.delete_novel("mage-academy")
    assert not library.delete_novel("mage-academy")
    assert not (tmp_path / "chapters" / "mage-academy").exists()
    assert library.get_chapters("mage-academy") == []
