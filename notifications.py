"""
Notification Center - Persistent JSON-based notification feed
Stores the most recent notifications (newest first) in <library>/notifications.json
"""

import json
import logging
import time
import uuid
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Union

import settings

logger = logging.getLogger(__name__)

# Older entries are dropped
MAX_NOTIFICATIONS = 50

NOTIFICATION_TYPES = ('scrape', 'chapter', 'system', 'update')

Listener = Callable[[List[Dict[str, Any]]], None]


class NotificationCenter:
    """Completion/failure feed for import jobs"""

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path) if path is not None else settings.LIBRARY_DIR / 'notifications.json'
        self._notifications: List[Dict[str, Any]] = []
        self._listeners: List[Listener] = []
        self._file_lock = Lock()
        self._load_notifications()

    def _load_notifications(self):
        """Load notifications from JSON file"""
        with self._file_lock:
            try:
                if self.path.exists():
                    with open(self.path, 'r', encoding='utf-8') as f:
                        self._notifications = json.load(f)
                    logger.debug(f"[NOTIFY] Loaded {len(self._notifications)} notifications")
            except json.JSONDecodeError as e:
                logger.error(f"[NOTIFY] Corrupted notifications file, resetting: {e}")
                self._notifications = []

    def _save_notifications(self):
        """Save notifications to JSON file and tell listeners"""
        with self._file_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(self._notifications, f, indent=2, ensure_ascii=False)
        self._notify()

    def _call_listener(self, listener: Listener, snapshot):
        try:
            listener(snapshot)
        except Exception as e:
            logger.error(f"[NOTIFY] Listener failed: {e}")

    def _notify(self):
        snapshot = self.get_notifications()
        for listener in list(self._listeners):
            self._call_listener(listener, snapshot)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; it is called right away with the current feed"""
        self._listeners.append(listener)
        self._call_listener(listener, self.get_notifications())

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def add_notification(self, title: str, body: str, type: str = 'scrape',
                         payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type}")
        notification = {
            'id': uuid.uuid4().hex[:9],
            'title': title,
            'body': body,
            'type': type,
            'payload': payload or {},
            'timestamp': int(time.time() * 1000),
            'is_read': False,
        }
        self._notifications.insert(0, notification)
        del self._notifications[MAX_NOTIFICATIONS:]
        self._save_notifications()
        logger.info(f"[NOTIFY] {title}: {body}")
        return notification

    def get_notifications(self) -> List[Dict[str, Any]]:
        return [dict(n) for n in self._notifications]

    def mark_as_read(self, notification_id: str):
        for n in self._notifications:
            if n['id'] == notification_id:
                n['is_read'] = True
        self._save_notifications()

    def mark_all_read(self):
        for n in self._notifications:
            n['is_read'] = True
        self._save_notifications()

    def get_unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.get('is_read'))

    def clear_all(self):
        self._notifications = []
        self._save_notifications()
