"""
Library - Persistent JSON-based store for imported novels and chapters
Stores one index file per novel and chapter bodies as separate HTML files:

    <root>/novels/<novel_id>.json
    <root>/chapters/<novel_id>/<chapter_id>.html
"""

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Union

import settings
from models import ChapterRecord, NovelRecord

logger = logging.getLogger(__name__)


class Library:
    """Key-addressed store for novel and chapter records"""

    def __init__(self, root: Union[str, Path, None] = None):
        self.root = Path(root) if root is not None else settings.LIBRARY_DIR
        self.novels_dir = self.root / 'novels'
        self.chapters_dir = self.root / 'chapters'
        self._lock = RLock()
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._ensure_directories()

    def _ensure_directories(self):
        """Create library directories if they don't exist"""
        self.novels_dir.mkdir(parents=True, exist_ok=True)
        self.chapters_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"[LIBRARY] Root: {self.root}")

    def _index_path(self, novel_id: str) -> Path:
        return self.novels_dir / f"{novel_id}.json"

    def _load(self, novel_id: str) -> Optional[Dict[str, Any]]:
        """Load a novel index from disk (cached after first read)"""
        if novel_id in self._cache:
            return self._cache[novel_id]
        path = self._index_path(novel_id)
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                index = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"[LIBRARY] Corrupted index for {novel_id}, ignoring: {e}")
            return None
        self._cache[novel_id] = index
        return index

    def _save(self, novel_id: str, index: Dict[str, Any]):
        path = self._index_path(novel_id)
        tmp = path.with_suffix('.json.tmp')
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(index, f, indent=2, ensure_ascii=False)
        tmp.replace(path)
        self._cache[novel_id] = index

    def _require(self, novel_id: str) -> Dict[str, Any]:
        index = self._load(novel_id)
        if index is None:
            raise KeyError(f"Unknown novel: {novel_id}")
        return index

    # --- Novels ---

    def add_novel(self, novel: NovelRecord) -> NovelRecord:
        """Insert a novel, or refresh its metadata if it already exists.

        Reading progress and the creation time of an existing record are kept.
        """
        with self._lock:
            index = self._load(novel.id)
            data = novel.to_dict()
            if index is None:
                data['created_at'] = data.get('created_at') or datetime.now().isoformat()
                index = {'novel': data, 'chapters': []}
                logger.info(f"[LIBRARY] Added novel {novel.title!r} ({novel.id})")
            else:
                existing = index['novel']
                data['created_at'] = existing.get('created_at') or data.get('created_at')
                if data.get('last_read_chapter_id') is None:
                    data['last_read_chapter_id'] = existing.get('last_read_chapter_id')
                index['novel'] = data
                logger.info(f"[LIBRARY] Updated novel {novel.title!r} ({novel.id})")
            self._save(novel.id, index)
            return NovelRecord.from_dict(data)

    def get_novel(self, novel_id: str) -> Optional[NovelRecord]:
        with self._lock:
            index = self._load(novel_id)
            return NovelRecord.from_dict(index['novel']) if index else None

    def get_novels(self, category: Optional[str] = None) -> List[NovelRecord]:
        with self._lock:
            novels = []
            for path in sorted(self.novels_dir.glob('*.json')):
                novel = self.get_novel(path.stem)
                if novel is not None and (category is None or novel.category == category):
                    novels.append(novel)
            return novels

    def delete_novel(self, novel_id: str) -> bool:
        with self._lock:
            path = self._index_path(novel_id)
            if not path.exists():
                return False
            path.unlink()
            self._cache.pop(novel_id, None)
            shutil.rmtree(self.chapters_dir / novel_id, ignore_errors=True)
            logger.info(f"[LIBRARY] Deleted novel {novel_id}")
            return True

    # --- Chapters ---

    def _write_content(self, novel_id: str, chapter_id: str, content: str) -> str:
        folder = self.chapters_dir / novel_id
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / f"{chapter_id}.html"
        path.write_text(content, encoding='utf-8')
        return str(path.relative_to(self.root))

    def _merge_chapter(self, index: Dict[str, Any], chapter: ChapterRecord,
                       content: Optional[str]) -> ChapterRecord:
        """Read-before-write keyed by source URL.

        An existing record keeps its id, read flag and stored body. A new
        URL whose id is already taken by another chapter gets a suffixed id.
        """
        chapters = index['chapters']
        existing = next((c for c in chapters if c.get('source_url') == chapter.source_url), None)
        data = chapter.to_dict()
        if existing is not None:
            data['id'] = existing['id']
        else:
            taken = {c['id'] for c in chapters}
            suffix = 2
            while data['id'] in taken:
                data['id'] = f"{chapter.id}-{suffix}"
                suffix += 1
        if content is not None:
            data['content_path'] = self._write_content(chapter.novel_id, data['id'], content)
        if existing is not None:
            data['is_read'] = existing.get('is_read', False) or data['is_read']
            if not data.get('content_path'):
                data['content_path'] = existing.get('content_path')
            chapters[chapters.index(existing)] = data
        else:
            chapters.append(data)
        return ChapterRecord.from_dict(data)

    def add_chapter(self, chapter: ChapterRecord, content: Optional[str] = None) -> ChapterRecord:
        with self._lock:
            index = self._require(chapter.novel_id)
            record = self._merge_chapter(index, chapter, content)
            self._save(chapter.novel_id, index)
            return record

    def add_chapters(self, chapters: Iterable[ChapterRecord]) -> int:
        """Bulk insert/update in a single index write"""
        with self._lock:
            count = 0
            touched: Dict[str, Dict[str, Any]] = {}
            for chapter in chapters:
                index = touched.get(chapter.novel_id) or self._require(chapter.novel_id)
                touched[chapter.novel_id] = index
                self._merge_chapter(index, chapter, None)
                count += 1
            for novel_id, index in touched.items():
                self._save(novel_id, index)
            return count

    def is_chapter_exists(self, novel_id: str, source_url: str) -> bool:
        with self._lock:
            index = self._load(novel_id)
            if index is None:
                return False
            return any(c.get('source_url') == source_url for c in index['chapters'])

    def get_chapters(self, novel_id: str) -> List[ChapterRecord]:
        """All chapters of a novel in reading order"""
        with self._lock:
            index = self._load(novel_id)
            if index is None:
                return []
            chapters = [ChapterRecord.from_dict(c) for c in index['chapters']]
        return sorted(chapters, key=lambda c: c.order_index)

    def get_chapter_content(self, novel_id: str, chapter_id: str) -> Optional[str]:
        with self._lock:
            index = self._load(novel_id)
            if index is None:
                return None
            chapter = next((c for c in index['chapters'] if c['id'] == chapter_id), None)
            if chapter is None or not chapter.get('content_path'):
                return None
            path = self.root / chapter['content_path']
            if not path.exists():
                logger.warning(f"[LIBRARY] Missing body file {path}")
                return None
            return path.read_text(encoding='utf-8')

    def mark_chapter_read(self, novel_id: str, chapter_id: str, is_read: bool = True) -> bool:
        with self._lock:
            index = self._require(novel_id)
            for chapter in index['chapters']:
                if chapter['id'] == chapter_id:
                    chapter['is_read'] = is_read
                    if is_read:
                        index['novel']['last_read_chapter_id'] = chapter_id
                    self._save(novel_id, index)
                    return True
            return False
