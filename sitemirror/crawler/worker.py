"""
Crawl worker: claims URLs from the work queue, loads them, and queues what they link to.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional

from .fetcher import FetchResult, WebFetcher
from .link_extractor import LinkExtractor
from .work_queue import URLRef, WorkQueue
from .checkpoint import Checkpointer
from ..storage.content_store import (
    ContentClass, ContentStore, FetchedResource, classify_content_type, guess_content_type
)
from ..utils.config import CrawlerConfig
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


class WorkerState(Enum):
    """Phases of one worker's fetch cycle."""
    IDLE = 'idle'
    CLAIMING = 'claiming'
    FETCHING = 'fetching'
    CLASSIFYING = 'classifying'
    EXTRACTING = 'extracting'
    FILTERING = 'filtering'
    COMMITTING = 'committing'
    STOPPED = 'stopped'


class CrawlWorker:
    """
    One of the concurrent crawl workers.

    All coordination with other workers goes through the WorkQueue. A worker
    stops when asked to, or when the queue is empty and no other worker still
    holds a URL (which could produce more work).

    ``prefetched`` holds fetch results obtained before the crawl started (the
    seed check), keyed by normalized URL; each is used once instead of a fetch.
    """

    def __init__(self, worker_id: str, queue: WorkQueue, fetcher: WebFetcher,
                 store: ContentStore, extractor: LinkExtractor, config: CrawlerConfig,
                 stop_event: asyncio.Event, checkpointer: Optional[Checkpointer] = None,
                 monitor: Optional[CrawlerMonitor] = None,
                 prefetched: Optional[Dict[str, FetchResult]] = None,
                 logger: Optional[logging.Logger] = None):
        self.worker_id = worker_id
        self.queue = queue
        self.fetcher = fetcher
        self.store = store
        self.extractor = extractor
        self.config = config
        self.stop_event = stop_event
        self.checkpointer = checkpointer
        self.monitor = monitor
        self.prefetched = prefetched if prefetched is not None else {}
        self.logger = logger or get_crawler_logger(__name__, worker=worker_id)

        self.state = WorkerState.IDLE
        self.processed = 0

    async def run(self):
        """Process URLs until the crawl is exhausted or stopped."""
        self.logger.debug("Worker started")

        while not self.stop_event.is_set():
            if self.checkpointer is not None:
                await self.checkpointer.maybe_checkpoint(self.queue)

            self.state = WorkerState.CLAIMING
            ref = self.queue.dequeue()
            if ref is None:
                if self.queue.is_idle():
                    break
                # Other workers may still discover links
                self.state = WorkerState.IDLE
                await asyncio.sleep(self.config.queue_check_interval)
                continue

            try:
                await self.process(ref)
            except Exception as e:
                self.logger.error(f"Error processing {ref.url}: {e}", exc_info=True, extra=self._context(ref))
                if self.monitor:
                    self.monitor.record_error('worker')

        self.state = WorkerState.STOPPED
        self.logger.info(f"Worker stopping after {self.processed} URLs")

    async def process(self, ref: URLRef) -> List[URLRef]:
        """
        Run one fetch cycle for a claimed URL.
        Returns the new URLRefs that survived filtering.
        """
        new_refs: List[URLRef] = []
        try:
            self.state = WorkerState.FETCHING
            resource = await self._obtain(ref)

            links: List[str] = []
            if resource is not None:
                self.state = WorkerState.CLASSIFYING
                links = self._links_from(resource, ref)

            self.state = WorkerState.FILTERING
            new_refs = self.filter_links(links, ref)

            self.state = WorkerState.COMMITTING
            if resource is not None and resource.from_network and not resource.existed_on_disk:
                if self.store.write(resource.url, resource.content):
                    if self.monitor:
                        self.monitor.record_page_stored(resource.url, len(resource.content))
                elif self.monitor:
                    self.monitor.record_error('storage')

            added = self.queue.enqueue_batch(new_refs)
            if self.monitor:
                self.monitor.record_links_queued(added)
            self.processed += 1
        finally:
            self.queue.mark_done(ref.url)
            self.state = WorkerState.IDLE

        return new_refs

    def _should_refresh(self, content_class: ContentClass) -> bool:
        if content_class.is_markup:
            return self.config.refresh_html
        if content_class is ContentClass.IMAGE:
            return self.config.refresh_images
        return False

    @staticmethod
    def _context(ref: URLRef) -> Dict[str, object]:
        return {'url': ref.url, 'depth': ref.depth}

    async def _obtain(self, ref: URLRef) -> Optional[FetchedResource]:
        """Load a URL from the mirror, or from the network when missing or due for refresh."""
        context = self._context(ref)
        on_disk = self.store.exists(ref.url)
        if on_disk:
            disk_class = classify_content_type(guess_content_type(ref.url))
            if not self._should_refresh(disk_class):
                resource = self.store.load(ref.url)
                if resource is not None:
                    self.logger.debug(f"Using mirrored copy of {ref.url}", extra=context)
                    if self.monitor:
                        self.monitor.record_disk_hit(ref.url)
                    return resource
                self.logger.warning(f"Could not read mirrored copy of {ref.url}, fetching instead",
                                    extra=context)

        self.logger.info(f"Q: [{self.queue.size()}] {ref.url} (depth {ref.depth})", extra=context)
        result = self.prefetched.pop(ref.key, None)
        if result is None:
            result = await self.fetcher.fetch(ref.url)
        if self.monitor:
            self.monitor.record_fetch(ref.url, result.status_code, result.fetch_time,
                                      len(result.content or b''))

        if not result.ok:
            self.logger.warning(f"Skipping {ref.url}: {result.error or result.status_code}", extra=context)
            if self.monitor:
                self.monitor.record_error('fetch')
            return None

        return FetchedResource(
            url=ref.url,
            content_type=result.content_type or '',
            content=result.content,
            existed_on_disk=on_disk,
            from_network=True
        )

    def _links_from(self, resource: FetchedResource, ref: URLRef) -> List[str]:
        content_class = resource.content_class

        if content_class.is_markup:
            self.state = WorkerState.EXTRACTING
            found = self.extractor.scan(resource.url, resource.text)
            if self.monitor:
                for _ in found.mail_links:
                    self.monitor.record_mail_link()
            return found.links

        if content_class is ContentClass.IMAGE:
            return []

        self.logger.warning(f"Unknown content type received: {resource.content_type!r} (URL was {resource.url})",
                            extra=self._context(ref))
        if self.monitor:
            self.monitor.record_error('unknown_content_type')
        return []

    def filter_links(self, links: List[str], ref: URLRef) -> List[URLRef]:
        """Drop known, non-matching and too-deep links; wrap the rest as URLRefs."""
        new_depth = ref.depth + 1
        max_depth = self.config.max_depth
        if max_depth != 0 and new_depth > max_depth:
            if links:
                self.logger.debug(f"Not following {len(links)} links from {ref.url}: depth limit {max_depth}")
            return []

        match = self.config.url_match
        new_refs = []
        for url in links:
            if self.queue.is_known(url):
                continue
            if match not in url:
                continue
            new_refs.append(URLRef(url=url, depth=new_depth, referrer=ref.url))
        return new_refs
