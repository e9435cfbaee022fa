"""
Manga Downloader - Resolve a chapter URL, fetch its pages and write an archive

Usage:
  python manga_downloader.py https://comic-fuz.com/manga/viewer/44994 -f cbz
  python manga_downloader.py https://shonenjumpplus.com/episode/16457717013869519536 -o out.pdf -f pdf
"""

import sys
import logging
import argparse
from threading import Event
from typing import Dict, Any, Optional, Callable, List

from manga_errors import DownloadCancelled, PartialFailure, ProviderError
from manga_http import HttpClient
from manga_models import Chapter
from manga_providers import get_provider, is_supported_url
from manga_scheduler import PageScheduler
from manga_settings import SettingsManager, SAVE_FORMATS, IMAGE_FORMATS, IMAGE_QUALITIES
from manga_utils import chapter_output_path, write_chapter

logger = logging.getLogger(__name__)


class ChapterDownloader:
    """Downloads single chapters; one HTTP session for the downloader's lifetime"""

    def __init__(self, settings: Optional[Dict[str, Any]] = None, client: Optional[HttpClient] = None):
        self.settings = settings if settings is not None else SettingsManager().get_settings()
        self.client = client or HttpClient.from_settings(self.settings)
        self.cancel_event = Event()

    def cancel(self):
        """Cancel ongoing operations"""
        self.cancel_event.set()

    def reset(self):
        """Reset cancellation flag"""
        self.cancel_event.clear()

    @staticmethod
    def is_supported(url: str) -> bool:
        return is_supported_url(url)

    def resolve(self, url: str) -> Chapter:
        provider = get_provider(url, self.client, self.settings)
        return provider.resolve(url)

    def download(self, url: str, output: Optional[str] = None, allow_partial: bool = False,
                 progress_callback: Optional[Callable] = None) -> Dict[str, Any]:
        """Download one chapter.

        Resolve failures propagate. When pages fail, PartialFailure is raised
        unless ``allow_partial`` is set, in which case the successful pages are
        written and the failures are listed in the returned summary.
        """
        self.reset()
        save_format = self.settings.get('save_format', 'zip')

        provider = get_provider(url, self.client, self.settings)
        if progress_callback:
            progress_callback("Fetching chapter info...")
        chapter = provider.resolve(url)

        def page_progress(done: int, total: int):
            if progress_callback and (done % 5 == 0 or done == total):
                progress_callback(f"Downloading {done}/{total} pages for {chapter.display_title}")

        scheduler = PageScheduler(provider, self.settings.get('max_workers'),
                                  self.cancel_event, page_progress)
        failed: List[Dict[str, Any]] = []
        try:
            pages = scheduler.run(chapter)
        except PartialFailure as e:
            if not allow_partial or not e.pages:
                raise
            pages = e.pages
            failed = [{'index': f.index, 'reason': f.reason, 'error': str(f.error)} for f in e.failures]
            logger.warning(f"Writing partial chapter: {len(pages)} pages, {len(failed)} missing")

        if not pages:
            raise ValueError(f"No downloadable pages in {chapter.display_title}")
        if self.cancel_event.is_set():
            raise DownloadCancelled("Cancelled before writing")

        path = output or chapter_output_path(chapter, self.settings.get('output_dir', '.'), save_format)
        written = write_chapter(pages, path, save_format,
                                self.settings.get('image_format', 'original'),
                                title=chapter.display_title)

        if progress_callback:
            progress_callback(f"Saved {len(pages)} pages to {written}")

        return {
            'title': chapter.display_title,
            'chapter_id': chapter.chapter_id,
            'output': written,
            'pages': len(pages),
            'failed': failed,
            'source': chapter.source,
        }

    def close(self):
        self.client.close()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Download a manga chapter from GigaViewer sites or COMIC FUZ")
    parser.add_argument("url", help="Chapter/episode URL")
    parser.add_argument("-o", "--output", default=None, help="Output file or directory")
    parser.add_argument("-f", "--format", choices=SAVE_FORMATS, default=None, dest="save_format",
                        help="Container to write (default from settings: zip)")
    parser.add_argument("--image-format", choices=IMAGE_FORMATS, default=None,
                        help="Re-encode pages to this format")
    parser.add_argument("-q", "--quality", choices=IMAGE_QUALITIES, default=None, dest="image_quality",
                        help="Requested image quality where the platform offers a choice")
    parser.add_argument("--workers", type=int, default=None, dest="max_workers",
                        help="Parallel page downloads")
    parser.add_argument("--partial", action="store_true", default=False,
                        help="Write the archive even if some pages failed")
    parser.add_argument("-v", "--verbose", action="store_true", default=False)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    overrides = {
        'save_format': args.save_format,
        'image_format': args.image_format,
        'image_quality': args.image_quality,
        'max_workers': args.max_workers,
    }
    try:
        settings = SettingsManager().get_settings(overrides)
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        return 1

    if not is_supported_url(args.url):
        logger.error(f"Unsupported URL: {args.url}")
        return 1

    downloader = ChapterDownloader(settings)
    try:
        result = downloader.download(args.url, args.output, allow_partial=args.partial,
                                     progress_callback=logger.info)
    except ProviderError as e:
        logger.error(f"Could not resolve chapter: {e}")
        return 1
    except PartialFailure as e:
        logger.error(f"Chapter incomplete, {len(e.pages)} pages ok, failed pages: "
                     f"{', '.join(f'{i} ({r})' for i, r in zip(e.failed_indices, e.reasons))}. "
                     f"Re-run with --partial to keep what was downloaded.")
        return 2
    except DownloadCancelled:
        logger.warning("Download cancelled")
        return 130
    except (ValueError, OSError) as e:
        logger.error(f"Download failed: {e}")
        return 1
    finally:
        downloader.close()

    if result['failed']:
        logger.warning(f"Missing pages: {', '.join(str(f['index']) for f in result['failed'])}")
    logger.info(f"Done: {result['title']} -> {result['output']}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
