#!/usr/bin/env python3
"""
Main entry point for the site mirror crawler.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from sitemirror import __version__
from sitemirror.crawler.scheduler import CrawlerScheduler
from sitemirror.crawler.fetcher import WebFetcher
from sitemirror.utils.config import load_config, Config, ConfigError
from sitemirror.utils.logger import setup_logging, log_system_info
from sitemirror.utils.monitoring import CrawlerMonitor, MetricsCollector


class CrawlerApp:
    """Main application class for the mirror crawler."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)

    def setup_signal_handlers(self):
        """Request a cooperative stop on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.scheduler:
                self.scheduler.stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(signum, lambda s, f: signal_handler(s))

    async def run(self, config: Config, max_duration: Optional[int] = None,
                  dry_run: bool = False) -> int:
        """Run the crawler."""
        try:
            self.logger.info("=== SITE MIRROR STARTING ===")
            self.logger.info(f"Seed URL: {config.crawler.start_location}")
            self.logger.info(f"Mirror root: {config.storage.save_root_directory}")
            self.logger.info(f"Max depth: {config.crawler.max_depth or 'unlimited'}")
            self.logger.info(f"Workers: {config.crawler.worker_count}")
            self.logger.info(f"URL match: {config.crawler.url_match!r}")
            self.logger.info(f"Checkpoint: every {config.checkpoint.interval_ms} ms "
                             f"({config.checkpoint.backend}), resume={config.checkpoint.resume}")

            if dry_run:
                self.logger.info("DRY RUN MODE: No actual crawling will be performed")
                return await self._dry_run(config)

            metrics = MetricsCollector(
                enable_prometheus=config.monitoring.metrics_enabled,
                prometheus_port=config.monitoring.prometheus_port
            )
            metrics.start_prometheus_server()

            self.scheduler = CrawlerScheduler(config, monitor=CrawlerMonitor(metrics))
            self.setup_signal_handlers()
            await self.scheduler.initialize()
            await self.scheduler.start()

            if max_duration and self.scheduler.tasks:
                _, pending = await asyncio.wait(self.scheduler.tasks, timeout=max_duration)
                if pending:
                    self.logger.info(f"Reached max duration: {max_duration} seconds")
                    self.scheduler.stop()
            await self.scheduler.wait()

        except ConfigError as e:
            self.logger.error(f"Cannot start crawl: {e}")
            return 2

        finally:
            if self.scheduler:
                await self.scheduler.close()
            self.logger.info("=== SITE MIRROR FINISHED ===")

        return 0

    async def _dry_run(self, config: Config) -> int:
        """Check the mirror root and fetch the seed URL once without crawling."""
        root = Path(config.storage.save_root_directory)
        try:
            root.mkdir(parents=True, exist_ok=True)
            self.logger.info(f"✓ Mirror root usable: {root}")
        except OSError as e:
            self.logger.error(f"✗ Mirror root unusable: {e}")
            return 2

        async with WebFetcher(
            user_agent=config.crawler.user_agent,
            request_timeout=config.crawler.request_timeout,
            max_concurrent_requests=1
        ) as fetcher:
            result = await fetcher.fetch(config.crawler.start_location)

        if not result.ok:
            self.logger.error(f"✗ Seed URL unreachable: {result.error}")
            return 2

        self.logger.info(f"✓ Seed URL reachable: {result.status_code} ({result.content_type})")
        self.logger.info("Dry run completed")
        return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Site Mirror - concurrent website mirroring crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # Run with default config.yaml
  python main.py --config my_config.yaml  # Run with custom config
  python main.py --resume                 # Continue from the last checkpoint
  python main.py --max-duration 3600      # Run for 1 hour max
  python main.py --dry-run                # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--resume',
        action='store_true',
        help='Resume from the checkpoint instead of starting at the seed URL'
    )

    parser.add_argument(
        '--max-duration',
        type=int,
        help='Maximum crawl duration in seconds'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually crawling'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Site Mirror {__version__}'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 2

    if args.resume:
        config.checkpoint.resume = True

    setup_logging(config.logging)
    log_system_info()

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(
            config=config,
            max_duration=args.max_duration,
            dry_run=args.dry_run
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
