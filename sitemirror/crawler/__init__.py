"""
Crawler core components.
"""

from .work_queue import WorkQueue, URLRef, QueueSnapshot, normalize_url
from .link_extractor import LinkExtractor, MailLinkLog
from .auth import CredentialProvider, StaticCredentialProvider
from .fetcher import WebFetcher, FetchResult
from .checkpoint import Checkpointer, CheckpointError, FileCheckpointStore, RedisCheckpointStore
from .worker import CrawlWorker, WorkerState
from .scheduler import CrawlerScheduler

__all__ = [
    'WorkQueue', 'URLRef', 'QueueSnapshot', 'normalize_url',
    'LinkExtractor', 'MailLinkLog',
    'CredentialProvider', 'StaticCredentialProvider',
    'WebFetcher', 'FetchResult',
    'Checkpointer', 'CheckpointError', 'FileCheckpointStore', 'RedisCheckpointStore',
    'CrawlWorker', 'WorkerState',
    'CrawlerScheduler'
]
