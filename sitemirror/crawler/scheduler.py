"""
Crawler scheduler that wires the components together and drives a crawl run.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional
from dataclasses import dataclass
import redis.asyncio as redis

from .auth import StaticCredentialProvider
from .fetcher import FetchResult, WebFetcher
from .link_extractor import LinkExtractor, MailLinkLog
from .work_queue import URLRef, WorkQueue, normalize_url
from .worker import CrawlWorker
from .checkpoint import (
    Checkpointer, CheckpointError, CheckpointStore, FileCheckpointStore, RedisCheckpointStore
)
from ..storage.content_store import ContentStore
from ..utils.config import Config, ConfigError
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor, MetricsCollector


@dataclass
class CrawlStats:
    """Statistics for a crawl run."""
    start_time: float
    end_time: Optional[float] = None
    urls_processed: int = 0
    urls_in_queue: int = 0

    @property
    def elapsed_time(self) -> float:
        return (self.end_time or time.time()) - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.urls_processed / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlerScheduler:
    """
    Owns one crawl run: the work queue, the mirror, the checkpointer and the
    pool of workers. This is the control surface used by the CLI.

    Components can be injected (mainly for tests); anything left out is built
    from the configuration in ``initialize()``.
    """

    def __init__(self, config: Config,
                 fetcher: Optional[WebFetcher] = None,
                 store: Optional[ContentStore] = None,
                 queue: Optional[WorkQueue] = None,
                 checkpoint_store: Optional[CheckpointStore] = None,
                 mail_log: Optional[MailLinkLog] = None,
                 monitor: Optional[CrawlerMonitor] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

        # Components
        self.redis_client: Optional[redis.Redis] = None
        self.fetcher = fetcher
        self.store = store if store is not None else ContentStore(config.storage.save_root_directory)
        self.queue = queue if queue is not None else WorkQueue()
        self.mail_log = mail_log if mail_log is not None else MailLinkLog(config.storage.mailto_log_file or None)
        self.extractor = LinkExtractor(self.mail_log)
        self.monitor = monitor if monitor is not None else CrawlerMonitor(MetricsCollector())
        self.checkpoint_store = checkpoint_store
        self.checkpointer: Optional[Checkpointer] = None

        # Crawl state
        self.stats = CrawlStats(start_time=time.time())
        self.workers: List[CrawlWorker] = []
        self.tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._stats_task: Optional[asyncio.Task] = None
        self._prefetched: Dict[str, FetchResult] = {}
        self._owns_fetcher = fetcher is None
        self._initialized = False

    async def initialize(self):
        """
        Prepare the mirror, the fetcher and the checkpoint store, then seed or
        restore the queue. Raises ConfigError if the crawl cannot start.
        """
        crawler = self.config.crawler
        try:
            self.store.initialize()
        except OSError as e:
            raise ConfigError(f"Cannot use mirror root {self.store.root}: {e}") from e

        if self.fetcher is None:
            credentials = None
            if crawler.basic_auth_user:
                credentials = StaticCredentialProvider(crawler.basic_auth_user, crawler.basic_auth_password)
            self.fetcher = WebFetcher(
                user_agent=crawler.user_agent,
                request_timeout=crawler.request_timeout,
                max_concurrent_requests=crawler.worker_count,
                credential_provider=credentials,
                max_content_size=crawler.max_content_size
            )
            await self.fetcher.start()

        if self.checkpoint_store is None:
            self.checkpoint_store = await self._create_checkpoint_store()
        self.checkpointer = Checkpointer(
            self.checkpoint_store,
            interval_ms=self.config.checkpoint.interval_ms,
            seed=crawler.start_location
        )

        restored = False
        if self.config.checkpoint.resume:
            try:
                restored = await self.restore_from_checkpoint()
            except CheckpointError as e:
                self.logger.error(f"Ignoring unreadable checkpoint, starting from the seed: {e}")
        if not restored:
            await self._check_seed(crawler.start_location)
            self.queue.enqueue(URLRef(url=crawler.start_location, depth=0))

        self._initialized = True
        self.logger.info(f"Crawler initialized: seed={crawler.start_location}, {self.queue}")

    async def _check_seed(self, seed: str):
        """
        Fetch the seed before any worker starts; a seed that cannot be fetched
        is a configuration error. The result is handed to the workers so the
        seed is not fetched twice. A seed already in the mirror is not checked.
        """
        if self.store.exists(seed):
            return
        result = await self.fetcher.fetch(seed)
        if not result.ok:
            raise ConfigError(f"Seed URL unreachable: {seed}: {result.error or result.status_code}")
        self._prefetched[normalize_url(seed)] = result

    async def _create_checkpoint_store(self) -> CheckpointStore:
        checkpoint = self.config.checkpoint
        if checkpoint.backend == 'redis':
            self.redis_client = redis.Redis(
                host=self.config.redis.host,
                port=self.config.redis.port,
                db=self.config.redis.db,
                password=self.config.redis.password,
                decode_responses=False
            )
            try:
                await self.redis_client.ping()
            except redis.RedisError as e:
                raise ConfigError(f"Redis checkpoint backend unreachable: {e}") from e
            self.logger.info("Redis connection established")
            return RedisCheckpointStore(self.redis_client, self.config.redis.checkpoint_key)
        return FileCheckpointStore(checkpoint.path)

    async def start(self):
        """Spawn the worker tasks and return immediately."""
        if self.is_running:
            self.logger.warning("Crawler is already running")
            return
        if not self._initialized:
            await self.initialize()

        self._stop_event.clear()
        self.stats = CrawlStats(start_time=time.time())

        self.workers = []
        self.tasks = []
        for i in range(self.config.crawler.worker_count):
            worker_id = f"worker-{i + 1}"
            worker = CrawlWorker(
                worker_id=worker_id,
                queue=self.queue,
                fetcher=self.fetcher,
                store=self.store,
                extractor=self.extractor,
                config=self.config.crawler,
                stop_event=self._stop_event,
                checkpointer=self.checkpointer,
                monitor=self.monitor,
                prefetched=self._prefetched,
                logger=get_crawler_logger(f"{__package__}.worker", worker=worker_id)
            )
            self.workers.append(worker)
            self.tasks.append(asyncio.create_task(worker.run(), name=worker_id))

        self.monitor.update_active_workers(len(self.tasks))
        self._stats_task = asyncio.create_task(self._stats_reporter())
        self.logger.info(f"Started crawling with {len(self.tasks)} workers")

    async def wait(self):
        """Wait until every worker has exited, then write the final checkpoint."""
        if not self.tasks:
            return

        results = await asyncio.gather(*self.tasks, return_exceptions=True)
        for worker, result in zip(self.workers, results):
            if isinstance(result, Exception):
                self.logger.error(f"Worker {worker.worker_id} died: {result}")

        self.stats.end_time = time.time()
        self.stats.urls_processed = sum(w.processed for w in self.workers)
        self.tasks = []
        self.monitor.update_active_workers(0)

        if self._stats_task:
            self._stats_task.cancel()
            await asyncio.gather(self._stats_task, return_exceptions=True)
            self._stats_task = None

        if self.checkpointer and self.checkpointer.enabled:
            await self.checkpoint_now()

        self._log_final_stats()

    async def run(self):
        """Start the crawl and wait for it to finish."""
        await self.start()
        await self.wait()

    def stop(self):
        """Ask workers to exit after their current URL."""
        self.logger.info("Stopping crawler...")
        self._stop_event.set()

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self.tasks)

    async def checkpoint_now(self) -> bool:
        """Write a checkpoint immediately."""
        if self.checkpointer is None:
            raise RuntimeError("Crawler not initialized")
        return await self.checkpointer.checkpoint(self.queue)

    async def restore_from_checkpoint(self) -> bool:
        """Load the queue from the stored checkpoint. False if there is none."""
        if self.checkpointer is None:
            raise RuntimeError("Crawler not initialized")
        if self.is_running:
            raise RuntimeError("Cannot restore a checkpoint while the crawl is running")
        return await self.checkpointer.restore(self.queue)

    async def _stats_reporter(self):
        """Periodically log crawl progress."""
        interval = self.config.monitoring.stats_interval
        while True:
            await asyncio.sleep(interval)
            self._log_current_stats()

    def _log_current_stats(self):
        self.stats.urls_in_queue = self.queue.size()
        self.stats.urls_processed = sum(w.processed for w in self.workers)
        active = sum(1 for task in self.tasks if not task.done())
        self.monitor.update_queue_size(self.stats.urls_in_queue)
        self.monitor.update_active_workers(active)

        self.logger.info(
            f"Crawl Progress: "
            f"Processed={self.stats.urls_processed}, "
            f"Queued={self.stats.urls_in_queue}, "
            f"InFlight={self.queue.in_flight_count()}, "
            f"Workers={active}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min"
        )

    def _log_final_stats(self):
        summary = self.monitor.get_summary()
        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"URLs processed: {self.stats.urls_processed}")
        self.logger.info(f"URLs remaining in queue: {self.queue.size()}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Mail links found: {self.mail_log.count}")
        self.logger.info(f"Storage stats: {self.store.get_stats()}")
        if self.fetcher is not None and hasattr(self.fetcher, 'get_stats'):
            self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")
        self.logger.info(f"Metrics: {summary['metrics']}")

    async def close(self):
        """Stop the crawl if needed and release connections."""
        if self.is_running:
            self.stop()
            await self.wait()

        if self.fetcher is not None and self._owns_fetcher:
            await self.fetcher.close()

        if self.redis_client:
            await self.redis_client.aclose()

        self.logger.info("Crawler scheduler closed")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'urls_processed': sum(w.processed for w in self.workers),
            'urls_in_queue': self.queue.size(),
            'urls_in_flight': self.queue.in_flight_count(),
            'elapsed_time': self.stats.elapsed_time,
            'mail_links': self.mail_log.count,
            'is_running': self.is_running,
            'worker_states': {w.worker_id: w.state.value for w in self.workers}
        }
