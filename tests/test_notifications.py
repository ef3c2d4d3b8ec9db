import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import notifications as notifications_module
from notifications import NotificationCenter


def test_notifications_are_newest_first_and_persisted(tmp_path):
    path = tmp_path / "notifications.json"
    center = NotificationCenter(path)
    center.add_notification("Novel Imported: A", "Saved 3 chapters")
    center.add_notification("Import Failed: B", "Timeout", payload={"novel_id": "b", "category": "Novel"})

    reopened = NotificationCenter(path)
    titles = [n["title"] for n in reopened.get_notifications()]

    assert titles == ["Import Failed: B", "Novel Imported: A"]
    assert reopened.get_notifications()[0]["payload"] == {"novel_id": "b", "category": "Novel"}
    assert reopened.get_unread_count() == 2


def test_feed_is_capped(tmp_path, monkeypatch):
    monkeypatch.setattr(notifications_module, "MAX_NOTIFICATIONS", 3)
    center = NotificationCenter(tmp_path / "n.json")
    for i in range(5):
        center.add_notification(f"n{i}", "body")

    assert [n["title"] for n in center.get_notifications()] == ["n4", "n3", "n2"]


def test_unknown_type_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        NotificationCenter(tmp_path / "n.json").add_notification("x", "y", type="chat")


def test_mark_read_and_clear(tmp_path):
    center = NotificationCenter(tmp_path / "n.json")
    first = center.add_notification("a", "1")
    center.add_notification("b", "2", type="system")

    center.mark_as_read(first["id"])
    assert center.get_unread_count() == 1
    center.mark_all_read()
    assert center.get_unread_count() == 0
    center.clear_all()
    assert center.get_notifications() == []


def test_subscribe_fires_immediately_and_on_change(tmp_path):
    center = NotificationCenter(tmp_path / "n.json")
    seen = []
    unsubscribe = center.subscribe(lambda feed: seen.append(len(feed)))

    center.add_notification("a", "1")
    unsubscribe()
    center.add_notification("b", "2")

    assert seen == [0, 1]


def test_failing_listener_does_not_block_others(tmp_path):
    center = NotificationCenter(tmp_path / "n.json")
    seen = []

    def broken(feed):
        if feed:
            raise RuntimeError("listener bug")

    center.subscribe(broken)
    center.subscribe(lambda feed: seen.append(len(feed)))
    center.add_notification("a", "1")

    assert seen == [0, 1]


def test_corrupted_file_resets_feed(tmp_path):
    path = tmp_path / "n.json"
    path.write_text("[{broken", encoding="utf-8")
    assert NotificationCenter(path).get_notifications() == []


def test_listener_failing_on_first_call_is_still_registered(tmp_path):
    center = NotificationCenter(tmp_path / "n.json")
    seen = []

    def broken(feed):
        seen.append(len(feed))
        raise RuntimeError("listener bug")

    unsubscribe = center.subscribe(broken)
    center.add_notification("a", "1")
    unsubscribe()

    assert seen == [0, 1]
