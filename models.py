"""
Data model shared by the scraper, the sources and the import orchestrator.

WorkMetadata/ChapterRef describe what a source currently lists; NovelRecord and
ChapterRecord are what the library persists.
"""

from collections import deque
from dataclasses import dataclass, field, asdict, replace
from typing import Any, Deque, Dict, List, Optional, Tuple

MAX_PROGRESS_LOGS = 50


@dataclass(frozen=True)
class ChapterRef:
    """Pointer to a chapter before its content is fetched.

    ``url`` is the chapter's identity: imports dedupe on it, never on title.
    """
    title: str
    url: str
    date: Optional[str] = None
    groups: Tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkMetadata:
    """Snapshot of a remote catalog entry at fetch time"""
    title: str
    author: str = 'Unknown'
    cover_url: str = ''
    summary: str = ''
    status: str = 'Ongoing'
    category: str = 'Novel'
    chapters: Tuple[ChapterRef, ...] = ()
    publishers: Tuple[str, ...] = ()
    selected_publisher: Optional[str] = None
    source_url: str = ''
    source_id: str = ''

    def with_chapters(self, chapters: List[ChapterRef], **changes) -> 'WorkMetadata':
        return replace(self, chapters=tuple(chapters), **changes)


@dataclass
class NovelRecord:
    id: str
    title: str
    source_url: str
    author: str = 'Unknown'
    cover_url: str = ''
    summary: str = ''
    category: str = 'Novel'
    status: str = 'Ongoing'
    selected_publisher: Optional[str] = None
    last_read_chapter_id: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NovelRecord':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class ChapterRecord:
    id: str
    novel_id: str
    title: str
    order_index: int
    source_url: str
    content_path: Optional[str] = None
    is_read: bool = False
    date: Optional[str] = None

    @property
    def has_content(self) -> bool:
        return bool(self.content_path)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChapterRecord':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class ScraperProgress:
    """Live state of the running job. Logs are newest first."""
    current: int = 0
    total: int = 0
    current_title: str = ''
    logs: Deque[str] = field(default_factory=lambda: deque(maxlen=MAX_PROGRESS_LOGS))

    def log(self, message: str) -> None:
        self.logs.appendleft(message)

    def snapshot(self) -> 'ScraperProgress':
        return ScraperProgress(
            current=self.current,
            total=self.total,
            current_title=self.current_title,
            logs=deque(self.logs, maxlen=MAX_PROGRESS_LOGS),
        )
