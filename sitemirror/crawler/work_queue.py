"""
Work queue for the mirror crawl.
Holds pending URLs in breadth-first order together with the dedup bookkeeping.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Set
from urllib.parse import urlsplit, urlunsplit


def normalize_url(url: str) -> str:
    """Normalize a URL for identity checks (fragment dropped, scheme/host lower-cased)."""
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url
    path = parts.path
    if not path and parts.scheme in ('http', 'https'):
        path = '/'
    return urlunsplit((
        parts.scheme.lower(),
        parts.netloc.lower(),
        path,
        parts.query,
        ''
    ))


@dataclass(frozen=True, eq=False)
class URLRef:
    """A URL waiting to be mirrored, with the depth it was discovered at."""
    url: str
    depth: int
    referrer: Optional[str] = None

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError(f"depth must be non-negative, got {self.depth}")

    @property
    def key(self) -> str:
        return normalize_url(self.url)

    def __eq__(self, other) -> bool:
        if not isinstance(other, URLRef):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'url': self.url,
            'depth': self.depth,
            'referrer': self.referrer
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'URLRef':
        """Create URLRef from dictionary."""
        return cls(
            url=data['url'],
            depth=int(data['depth']),
            referrer=data.get('referrer')
        )


@dataclass
class QueueSnapshot:
    """Point-in-time copy of the queue state."""
    pending: List[URLRef] = field(default_factory=list)
    in_flight: List[URLRef] = field(default_factory=list)
    scheduled_or_done: Set[str] = field(default_factory=set)


class WorkQueue:
    """
    FIFO queue of URLRefs shared by all crawl workers.

    Every URL that was ever enqueued stays in ``scheduled_or_done`` for the
    whole run, so a URL is handed out at most once. URLs claimed by a worker
    are tracked as in-flight until ``mark_done`` so a checkpoint can put them
    back on the queue after a crash.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._pending: Deque[URLRef] = deque()
        self._in_flight: Dict[str, URLRef] = {}
        self._scheduled_or_done: Set[str] = set()

    def _enqueue_locked(self, ref: URLRef) -> bool:
        key = ref.key
        if key in self._scheduled_or_done:
            return False
        self._pending.append(ref)
        self._scheduled_or_done.add(key)
        return True

    def enqueue(self, ref: URLRef) -> bool:
        """
        Add a URL to the back of the queue.
        Returns False (and does nothing) if the URL was seen before.
        """
        with self._lock:
            added = self._enqueue_locked(ref)
        if added:
            self.logger.debug(f"Queued {ref.url} at depth {ref.depth}")
        return added

    def enqueue_batch(self, refs: Iterable[URLRef]) -> int:
        """Add several URLs under one lock acquisition. Returns count of added URLs."""
        with self._lock:
            added_count = sum(1 for ref in refs if self._enqueue_locked(ref))
        return added_count

    def dequeue(self) -> Optional[URLRef]:
        """Pop the oldest pending URL and mark it in-flight. None if the queue is empty."""
        with self._lock:
            if not self._pending:
                return None
            ref = self._pending.popleft()
            self._in_flight[ref.key] = ref
            return ref

    def mark_done(self, url: str):
        """Clear the in-flight marker for a URL."""
        with self._lock:
            self._in_flight.pop(normalize_url(url), None)

    def is_known(self, url: str) -> bool:
        """True if the URL was ever enqueued in this run."""
        with self._lock:
            return normalize_url(url) in self._scheduled_or_done

    def size(self) -> int:
        with self._lock:
            return len(self._pending)

    def __len__(self) -> int:
        return self.size()

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def is_idle(self) -> bool:
        """True when nothing is pending and no worker holds a URL."""
        with self._lock:
            return not self._pending and not self._in_flight

    def snapshot(self) -> QueueSnapshot:
        with self._lock:
            return QueueSnapshot(
                pending=list(self._pending),
                in_flight=list(self._in_flight.values()),
                scheduled_or_done=set(self._scheduled_or_done)
            )

    def restore(self, pending: Iterable[URLRef], in_flight: Iterable[URLRef],
                scheduled_or_done: Iterable[str] = ()):
        """
        Replace the queue state with a previously taken snapshot.

        In-flight URLs never completed, so they go back to the front of the
        queue ahead of the pending ones.
        """
        restored: Deque[URLRef] = deque()
        keys: Set[str] = set()
        for ref in list(in_flight) + list(pending):
            if ref.key in keys:
                continue
            restored.append(ref)
            keys.add(ref.key)

        with self._lock:
            self._pending = restored
            self._in_flight = {}
            self._scheduled_or_done = keys | {normalize_url(u) for u in scheduled_or_done}

        self.logger.info(
            f"Restored work queue: {len(restored)} pending, "
            f"{len(self._scheduled_or_done)} known URLs"
        )

    def __repr__(self) -> str:
        with self._lock:
            return (f"WorkQueue(pending={len(self._pending)}, "
                    f"in_flight={len(self._in_flight)}, "
                    f"known={len(self._scheduled_or_done)})")
