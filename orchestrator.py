"""
Import/Sync Orchestrator - single-flight job runner

Drives a source adapter end to end for three jobs:
- import: store a work and fetch every chapter not already in the library
- sync: fetch only the chapters appended since the last import
- download: fill in bodies for chapters stored without content

One job runs at a time per orchestrator; a second start while running is
ignored. Blocking adapter calls run in the default executor so progress
listeners stay live during long imports.
"""

import asyncio
import functools
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from urllib.parse import unquote, urlparse

import settings
from errors import UnsupportedSource, is_error_marker
from library import Library
from models import ChapterRecord, NovelRecord, ScraperProgress, WorkMetadata
from notifications import NotificationCenter
from sources import Source, SiteKind, get_source, source_for_kind
from transport import Transport

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 200
MIN_IMAGE_LENGTH = 50

MAX_SLUG_LENGTH = 60
# Path segments that name a section rather than the work
GENERIC_SEGMENTS = {'novel', 'novels', 'book', 'books', 'series', 'manga', 'manhwa',
                    'comic', 'title', 'chapters', 'webtoon', 'read', 'info'}

ProgressListener = Callable[[ScraperProgress, bool], None]


def generate_slug(text: str) -> str:
    slug = re.sub(r'\s+', '-', (text or '').strip().lower())
    slug = re.sub(r'[^a-z0-9-]', '', slug)
    slug = re.sub(r'-{2,}', '-', slug).strip('-')
    return slug[:MAX_SLUG_LENGTH].rstrip('-')


def derive_novel_id(url: str, title: str) -> str:
    """Stable id from the URL's work slug, falling back to the title"""
    segments = [unquote(s) for s in urlparse(url or '').path.split('/') if s]
    for segment in reversed(segments):
        segment = re.sub(r'\.(?:html?|php)$', '', segment, flags=re.I)
        if segment.lower() in GENERIC_SEGMENTS or segment.isdigit():
            continue
        slug = generate_slug(segment)
        if slug:
            return slug
    return generate_slug(title) or 'untitled'


def chapter_id(novel_id: str, order_index: int) -> str:
    return f"{novel_id}-ch-{order_index + 1}"


class ImportOrchestrator:
    """Single-flight import/sync/download runner for one content kind"""

    def __init__(self, library: Library, notifications: NotificationCenter,
                 kind: str = 'novel',
                 transport: Optional[Transport] = None,
                 chapter_delay: Optional[float] = None,
                 source_factory: Optional[Callable[..., Source]] = None):
        if kind not in ('novel', 'manhwa'):
            raise ValueError(f"Unknown orchestrator kind: {kind}")
        self.library = library
        self.notifications = notifications
        self.kind = kind
        self.category = 'Manhwa' if kind == 'manhwa' else 'Novel'
        self.transport = transport or Transport()
        self.chapter_delay = settings.CHAPTER_DELAY if chapter_delay is None else chapter_delay
        self.source_factory = source_factory or get_source

        self.progress = ScraperProgress()
        self.is_running = False
        self.active_work: Optional[WorkMetadata] = None
        self.cancelled = False
        self._listeners: List[ProgressListener] = []

    # --- Progress ---

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener; it fires immediately and after every state change"""
        self._listeners.append(listener)
        self._call_listener(listener, self.progress.snapshot())

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _call_listener(self, listener: ProgressListener, snapshot):
        try:
            listener(snapshot, self.is_running)
        except Exception as e:
            logger.error(f"[IMPORT] Progress listener failed: {e}")

    def _notify_listeners(self):
        snapshot = self.progress.snapshot()
        for listener in list(self._listeners):
            self._call_listener(listener, snapshot)

    def _log(self, message: str):
        self.progress.log(message)
        logger.info(f"[IMPORT] {message}")
        self._notify_listeners()

    def clear_progress(self):
        """Reset the progress view. Ignored while a job is running."""
        if self.is_running:
            return
        self.progress = ScraperProgress()
        self._notify_listeners()

    def cancel(self):
        """Stop the running job before its next chapter"""
        if self.is_running and not self.cancelled:
            self.cancelled = True
            self._log('Cancelling after the current chapter...')

    def _begin(self, title: str) -> bool:
        if self.is_running:
            logger.info(f"[IMPORT] A {self.kind} job is already running, ignoring request for {title}")
            return False
        self.is_running = True
        self.cancelled = False
        self.progress = ScraperProgress(current_title='Preparing...')
        self._notify_listeners()
        return True

    def _end(self):
        self.is_running = False
        self.active_work = None
        self._notify_listeners()

    # --- Adapters ---

    async def _call(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _source(self, url: str) -> Source:
        return self.source_factory(url, self.transport, images=self.kind == 'manhwa')

    async def fetch_work(self, url: str) -> WorkMetadata:
        """Fetch a work for preview. Raises ScraperError subclasses on failure."""
        source = self._source(url)
        logger.info(f"[IMPORT] Fetching {url} with {source.name}")
        return await self._call(source.fetch_details, url)

    async def search(self, query: str, site: Union[SiteKind, str]) -> List[WorkMetadata]:
        source = source_for_kind(SiteKind(site), self.transport, images=self.kind == 'manhwa')
        return await self._call(source.search, query)

    async def filter_by_publisher(self, work: WorkMetadata, publisher: Optional[str]) -> WorkMetadata:
        source = self._source(work.source_url)
        if not hasattr(source, 'filter_by_publisher'):
            raise UnsupportedSource(f"{source.name} has no publisher filter")
        return await self._call(source.filter_by_publisher, work, publisher)

    # --- Per-chapter loop ---

    async def _run_chapters(self, source: Source, novel_id: str,
                            records: Sequence[ChapterRecord],
                            should_skip: Callable[[ChapterRecord], bool],
                            prefetch: bool = True) -> Dict[str, Any]:
        """Fetch and store each chapter in order. A failing chapter never stops the loop."""
        min_length = MIN_IMAGE_LENGTH if source.is_image_source else MIN_TEXT_LENGTH
        summary = {'novel_id': novel_id, 'total': len(records), 'saved': 0,
                   'skipped': 0, 'failed': 0, 'cancelled': False}
        self.progress.total = len(records)

        for position, record in enumerate(records):
            if self.cancelled:
                summary['cancelled'] = True
                self._log(f"Cancelled with {len(records) - position} chapters left")
                break

            self.progress.current = position + 1
            self.progress.current_title = record.title

            if should_skip(record):
                summary['skipped'] += 1
                self._log(f"⏭ {record.title} (already imported)")
                continue

            if not prefetch:
                self.library.add_chapter(record)
                summary['saved'] += 1
                self._log(f"✓ {record.title} (queued for download)")
                continue

            try:
                body = await self._call(source.fetch_chapter_body, record.source_url)
                if is_error_marker(body) or len(body or '') < min_length:
                    summary['failed'] += 1
                    self._log(f"✗ {record.title}: no usable content")
                else:
                    self.library.add_chapter(record, body)
                    summary['saved'] += 1
                    self._log(f"✓ {record.title}")
            except Exception as e:
                logger.warning(f"[IMPORT] Chapter {record.source_url} failed: {e}")
                summary['failed'] += 1
                self._log(f"✗ {record.title}: {e}")

            if position < len(records) - 1 and self.chapter_delay:
                await asyncio.sleep(self.chapter_delay)
        return summary

    def _records(self, novel_id: str, work_chapters, offset: int) -> List[ChapterRecord]:
        return [
            ChapterRecord(
                id=chapter_id(novel_id, offset + position),
                novel_id=novel_id,
                title=ref.title,
                order_index=offset + position,
                source_url=ref.url,
                date=ref.date,
            )
            for position, ref in enumerate(work_chapters)
        ]

    def _finish(self, title: str, body: str, novel_id: Optional[str], category: Optional[str] = None):
        self.notifications.add_notification(
            title=title,
            body=body,
            type='scrape',
            payload={'novel_id': novel_id, 'category': category or self.category},
        )

    @staticmethod
    def _describe(summary: Dict[str, Any]) -> str:
        text = f"{summary['saved']} saved, {summary['skipped']} skipped, {summary['failed']} failed"
        return text + (' (cancelled)' if summary['cancelled'] else '')

    # --- Jobs ---

    async def start_import(self, url: str, work: Optional[WorkMetadata] = None,
                           prefetch: bool = True) -> Optional[Dict[str, Any]]:
        """Import a work and its chapters.

        Returns a summary dict, or None when another job is already running.
        Failures are reported through the notification feed, not raised.
        """
        if not self._begin(work.title if work else url):
            return None

        novel_id = None
        title = work.title if work else url
        try:
            source = self._source(url)
            if work is None:
                self._log(f"Fetching {url}")
                work = await self._call(source.fetch_details, url)
                title = work.title
            self.active_work = work

            novel_id = derive_novel_id(url, work.title)
            self.library.add_novel(NovelRecord(
                id=novel_id,
                title=work.title,
                source_url=url,
                author=work.author,
                cover_url=work.cover_url,
                summary=work.summary,
                category=work.category,
                status=work.status,
                selected_publisher=work.selected_publisher,
            ))
            self._log(f"Importing {len(work.chapters)} chapters of {work.title}")

            records = self._records(novel_id, work.chapters, offset=0)
            summary = await self._run_chapters(
                source, novel_id, records,
                should_skip=lambda r: self.library.is_chapter_exists(novel_id, r.source_url),
                prefetch=prefetch,
            )
            summary.update(title=work.title, status='cancelled' if summary['cancelled'] else 'completed')
            self._log(f"✅ Import finished: {self._describe(summary)}")
            self._finish(f"{work.category} Imported: {work.title}", self._describe(summary), novel_id,
                         category=work.category)
            return summary
        except Exception as e:
            logger.error(f"[IMPORT] Import of {url} failed: {e}")
            self._log(f"❌ Import failed: {e}")
            self._finish(f"Import Failed: {title}", str(e), novel_id)
            return {'novel_id': novel_id, 'title': title, 'status': 'failed', 'error': str(e)}
        finally:
            self._end()

    async def _current_chapter_list(self, source: Source, novel: NovelRecord):
        if novel.selected_publisher and hasattr(source, 'filter_by_publisher'):
            work = WorkMetadata(title=novel.title, source_url=novel.source_url)
            work = await self._call(source.filter_by_publisher, work, novel.selected_publisher)
            return list(work.chapters)
        return await self._call(source.fetch_chapter_list, novel.source_url)

    async def sync_novel(self, novel_id: str) -> Optional[Dict[str, Any]]:
        """Fetch chapters listed after the ones already stored (tail delta by count)"""
        if not self._begin(novel_id):
            return None

        title = novel_id
        try:
            novel = self.library.get_novel(novel_id)
            if novel is None:
                raise KeyError(f"Unknown novel: {novel_id}")
            title = novel.title
            source = self._source(novel.source_url)
            self._log(f"Checking {novel.title} for new chapters")

            refs = await self._current_chapter_list(source, novel)
            existing = len(self.library.get_chapters(novel_id))
            new_refs = refs[existing:]
            self._log(f"{len(refs)} listed, {existing} stored, {len(new_refs)} new")

            records = self._records(novel_id, new_refs, offset=existing)
            summary = await self._run_chapters(
                source, novel_id, records,
                should_skip=lambda r: self.library.is_chapter_exists(novel_id, r.source_url),
            )
            summary.update(title=novel.title, status='cancelled' if summary['cancelled'] else 'completed')
            if summary['saved']:
                self._finish(f"New chapters: {novel.title}", self._describe(summary), novel_id,
                             category=novel.category)
            return summary
        except Exception as e:
            logger.error(f"[IMPORT] Sync of {novel_id} failed: {e}")
            self._log(f"❌ Sync failed: {e}")
            self._finish(f"Sync Failed: {title}", str(e), novel_id)
            return {'novel_id': novel_id, 'title': title, 'status': 'failed', 'error': str(e)}
        finally:
            self._end()

    async def download_chapters(self, novel_id: str,
                                chapters: Optional[Sequence[ChapterRecord]] = None) -> Optional[Dict[str, Any]]:
        """Fetch bodies for stored chapters that have none (or for an explicit subset)"""
        if not self._begin(novel_id):
            return None

        title = novel_id
        try:
            novel = self.library.get_novel(novel_id)
            if novel is None:
                raise KeyError(f"Unknown novel: {novel_id}")
            title = novel.title
            source = self._source(novel.source_url)
            if chapters is None:
                chapters = [c for c in self.library.get_chapters(novel_id) if not c.has_content]
            self._log(f"Downloading {len(chapters)} chapters of {novel.title}")

            summary = await self._run_chapters(source, novel_id, list(chapters),
                                               should_skip=lambda r: r.has_content)
            summary.update(title=novel.title, status='cancelled' if summary['cancelled'] else 'completed')
            self._finish(f"Download complete: {novel.title}", self._describe(summary), novel_id,
                         category=novel.category)
            return summary
        except Exception as e:
            logger.error(f"[IMPORT] Download for {novel_id} failed: {e}")
            self._log(f"❌ Download failed: {e}")
            self._finish(f"Download Failed: {title}", str(e), novel_id)
            return {'novel_id': novel_id, 'title': title, 'status': 'failed', 'error': str(e)}
        finally:
            self._end()
