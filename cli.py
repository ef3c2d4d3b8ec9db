"""
novelsync command line

    novelsync search "solo leveling" --site mangadex
    novelsync show https://mangadex.org/title/<id>
    novelsync import https://example.com/novel/some-novel
    novelsync sync some-novel
    novelsync download some-novel
    novelsync list
"""

import argparse
import asyncio
import logging
import sys

import settings
from errors import ScraperError
from library import Library
from notifications import NotificationCenter
from orchestrator import ImportOrchestrator
from sources import SiteKind

logger = logging.getLogger(__name__)


def setup_logging(level: str):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='novelsync', description='Import serialized fiction for offline reading')
    parser.add_argument('--library', default=None, help=f'library directory (default {settings.LIBRARY_DIR})')
    parser.add_argument('--manhwa', action='store_true', help='treat generic sites as image chapters')
    parser.add_argument('--log-level', default=settings.LOG_LEVEL)
    sub = parser.add_subparsers(dest='command', required=True)

    search = sub.add_parser('search', help='search a catalog')
    search.add_argument('query')
    search.add_argument('--site', default=SiteKind.MANGADEX.value,
                        choices=[k.value for k in SiteKind if k is not SiteKind.GENERIC])

    show = sub.add_parser('show', help='preview a work and its chapter list')
    show.add_argument('url')
    show.add_argument('--publisher', default=None, help='keep one scanlation group (ComicK)')

    imp = sub.add_parser('import', help='import a work')
    imp.add_argument('url')
    imp.add_argument('--publisher', default=None, help='keep one scanlation group (ComicK)')
    imp.add_argument('--lazy', action='store_true', help='store the chapter list now, bodies later')

    sync = sub.add_parser('sync', help='fetch newly listed chapters')
    sync.add_argument('novel_id')

    download = sub.add_parser('download', help='fetch bodies of chapters stored without content')
    download.add_argument('novel_id')

    sub.add_parser('list', help='list the library')
    return parser


def print_progress(progress, is_running):
    if progress.logs and is_running:
        print(f"[{progress.current}/{progress.total}] {progress.logs[0]}")


async def run(args) -> int:
    library = Library(args.library) if args.library else Library()
    notifications = NotificationCenter(library.root / 'notifications.json')
    manhwa = args.manhwa
    if args.command in ('sync', 'download'):
        # Stored works remember their kind
        novel = library.get_novel(args.novel_id)
        manhwa = manhwa or (novel is not None and novel.category == 'Manhwa')
    orchestrator = ImportOrchestrator(library, notifications, kind='manhwa' if manhwa else 'novel')

    if args.command == 'list':
        for novel in library.get_novels():
            chapters = library.get_chapters(novel.id)
            stored = sum(1 for c in chapters if c.has_content)
            print(f"{novel.id}  {novel.title} [{novel.category}] {stored}/{len(chapters)} chapters")
        return 0

    if args.command == 'search':
        for work in await orchestrator.search(args.query, args.site):
            print(f"{work.title} - {work.source_url}")
        return 0

    if args.command in ('show', 'import'):
        work = await orchestrator.fetch_work(args.url)
        if args.publisher:
            work = await orchestrator.filter_by_publisher(work, args.publisher)
        if args.command == 'show':
            print(f"{work.title} by {work.author} ({work.status})")
            if work.publishers:
                print(f"Publishers: {', '.join(work.publishers)}")
            for index, ref in enumerate(work.chapters, 1):
                print(f"{index:>5}. {ref.title}" + (f"  ({ref.date})" if ref.date else ''))
            return 0
        orchestrator.subscribe(print_progress)
        summary = await orchestrator.start_import(args.url, work=work, prefetch=not args.lazy)
    elif args.command == 'sync':
        orchestrator.subscribe(print_progress)
        summary = await orchestrator.sync_novel(args.novel_id)
    else:
        orchestrator.subscribe(print_progress)
        summary = await orchestrator.download_chapters(args.novel_id)

    print(summary)
    return 1 if summary and summary.get('status') == 'failed' else 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except ScraperError as e:
        logger.error(f"[CLI] {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == '__main__':
    sys.exit(main())
