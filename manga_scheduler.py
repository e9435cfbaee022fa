"""
Manga Scheduler - Fetch every image page of a chapter in parallel and keep chapter order

Each worker runs the whole per-page pipeline (fetch -> decrypt -> descramble)
and its result lands in the slot of the page's position, so completion order
never matters. Failures are collected per page; nothing is retried here.
"""

import logging
from threading import Event, Lock
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from manga_crypto import decrypt_aes_cbc
from manga_errors import DownloadCancelled, PartialFailure
from manga_models import Chapter, FetchResult, ImagePage, PageFailure, PageResult
from manga_settings import default_max_workers
from manga_utils import descramble_giga_image, sniff_image_format

logger = logging.getLogger(__name__)


class PageScheduler:
    """Bounded-parallel page downloader for one provider"""

    def __init__(self, provider, max_workers: Optional[int] = None,
                 cancel_event: Optional[Event] = None,
                 progress_callback: Optional[Callable] = None):
        self.provider = provider
        self.max_workers = max_workers or default_max_workers()
        self.cancel_event = cancel_event or Event()
        self.progress_callback = progress_callback
        self._count_lock = Lock()
        self._in_flight = 0
        self.peak_in_flight = 0

    def cancel(self):
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _enter(self):
        with self._count_lock:
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)

    def _leave(self):
        with self._count_lock:
            self._in_flight -= 1

    def process_page(self, index: int, page: ImagePage) -> FetchResult:
        """Fetch one page and turn it into usable image bytes"""
        if self.cancelled:
            return PageFailure(index, DownloadCancelled())

        self._enter()
        try:
            data = self.provider.fetch_page_bytes(page)
        except Exception as e:
            logger.warning(f"Failed to download page {index}: {e}")
            return PageFailure(index, e)
        finally:
            self._leave()

        try:
            if page.decryption is not None:
                data = decrypt_aes_cbc(data, page.decryption.cipher_params())
            if page.scrambled:
                data = descramble_giga_image(data)
            return PageResult(index, data, sniff_image_format(data))
        except Exception as e:
            logger.warning(f"Failed to decode page {index}: {e}")
            return PageFailure(index, e)

    def run(self, chapter: Chapter) -> List[PageResult]:
        """Download all image pages; raises PartialFailure if any page failed"""
        image_pages = [(i, p) for i, p in enumerate(self.provider.list_pages(chapter))
                       if isinstance(p, ImagePage)]
        total = len(image_pages)
        if not total:
            logger.warning(f"Chapter {chapter.chapter_id} has no image pages")
            return []

        slots: List[Optional[FetchResult]] = [None] * total
        done = 0
        logger.info(f"Downloading {total} pages of {chapter.display_title} with {self.max_workers} workers")

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            future_to_slot = {
                executor.submit(self.process_page, index, page): slot
                for slot, (index, page) in enumerate(image_pages)
            }
            for future in as_completed(future_to_slot):
                if self.cancelled:
                    break
                slots[future_to_slot[future]] = future.result()
                done += 1
                if self.progress_callback:
                    self.progress_callback(done, total)
        except KeyboardInterrupt:
            self.cancel()
        finally:
            executor.shutdown(wait=not self.cancelled, cancel_futures=self.cancelled)

        if self.cancelled:
            logger.info(f"Download of {chapter.display_title} cancelled after {done}/{total} pages")
            raise DownloadCancelled(f"Cancelled after {done}/{total} pages")

        pages = [r for r in slots if r.ok]
        failures = [r for r in slots if not r.ok]
        if failures:
            logger.warning(f"{len(failures)}/{total} pages failed for {chapter.display_title}")
            raise PartialFailure(pages, failures)
        return pages
