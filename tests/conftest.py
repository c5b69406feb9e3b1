"""Shared fixtures: a scripted HTTP collaborator and crawl configuration helpers."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Tuple

from sitemirror.crawler.fetcher import FetchResult
from sitemirror.utils.config import (
    CheckpointConfig, Config, CrawlerConfig, StorageConfig
)


class FakeFetcher:
    """Serves canned responses and records every URL it was asked for."""

    def __init__(self, pages: Optional[Dict[str, Tuple[str, bytes]]] = None, on_fetch=None,
                 delay: float = 0):
        self.pages = dict(pages or {})
        self.delay = delay
        self.calls: List[str] = []
        self.on_fetch = on_fetch

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        if self.on_fetch is not None:
            self.on_fetch(url)
        # yield so concurrent workers interleave
        await asyncio.sleep(self.delay)
        if url not in self.pages:
            return FetchResult(url=url, status_code=404, error="HTTP 404")
        content_type, body = self.pages[url]
        return FetchResult(url=url, status_code=200, content=body, content_type=content_type)

    def count(self, url: str) -> int:
        return self.calls.count(url)


def html(*hrefs: str) -> Tuple[str, bytes]:
    """An HTML page whose body links to ``hrefs``."""
    body = "".join(f'<a href="{href}">link</a>\n' for href in hrefs)
    return "text/html; charset=utf-8", f"<html><body>{body}</body></html>".encode()


def make_config(tmp_path, **crawler_options) -> Config:
    crawler_options.setdefault("start_location", "http://x/")
    crawler_options.setdefault("worker_count", 1)
    crawler_options.setdefault("queue_check_interval", 0.01)
    return Config(
        crawler=CrawlerConfig(**crawler_options),
        storage=StorageConfig(
            save_root_directory=str(tmp_path / "mirror"),
            mailto_log_file=str(tmp_path / "mailto.txt"),
        ),
        checkpoint=CheckpointConfig(path=str(tmp_path / "spider.checkpoint.json")),
    )

