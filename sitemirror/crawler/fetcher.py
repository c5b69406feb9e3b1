"""
HTTP fetcher for mirrored resources, with basic-auth challenge handling.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Dict, Optional
from urllib.parse import urlsplit
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError, BasicAuth

from .auth import CredentialProvider, parse_basic_realm


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    content: Optional[bytes] = None
    headers: Optional[Dict[str, str]] = None
    error: Optional[str] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status_code < 300 and self.content is not None


class ContentTooLarge(Exception):
    """Raised when a response body exceeds the configured size limit."""
    pass


class WebFetcher:
    """
    Fetches URLs as raw bytes with a concurrency limit and error handling.
    Basic-auth challenges are answered from a credential provider.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_concurrent_requests: int = 10,
                 credential_provider: Optional[CredentialProvider] = None,
                 max_content_size: int = 50 * 1024 * 1024,
                 logger: Optional[logging.Logger] = None):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.credential_provider = credential_provider
        self.max_content_size = max_content_size

        self.logger = logger or logging.getLogger(__name__)

        # Session management
        self.session: Optional[ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)

        # Credentials that worked, per host
        self._host_auth: Dict[str, BasicAuth] = {}

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'auth_challenges': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult with the body, or with ``error`` set on failure
        """
        start_time = time.time()
        host = urlsplit(url).netloc.lower()

        async with self.semaphore:
            try:
                self.stats['total_requests'] += 1
                result = await self._request(url, self._host_auth.get(host), start_time)

                if result.status_code == 401 and self.credential_provider is not None:
                    auth = self._answer_challenge(url, result.headers or {})
                    if auth is not None:
                        result = await self._request(url, auth, start_time)
                        if result.ok:
                            self._host_auth[host] = auth

                if result.ok:
                    self.stats['successful_requests'] += 1
                    self.stats['total_bytes_downloaded'] += len(result.content)
                    self.logger.debug(f"Fetched {url}: {result.status_code} ({len(result.content)} bytes)")
                else:
                    self.stats['failed_requests'] += 1
                    self.logger.warning(f"Failed to fetch {url}: {result.error}")
                return result

            except asyncio.TimeoutError:
                self.stats['failed_requests'] += 1
                error_msg = "Request timeout"
                self.logger.warning(f"Timeout fetching {url}")

            except ContentTooLarge as e:
                self.stats['failed_requests'] += 1
                error_msg = str(e)
                self.logger.warning(f"Content too large at {url}: {e}")

            except ClientError as e:
                self.stats['failed_requests'] += 1
                error_msg = f"Client error: {str(e)}"
                self.logger.warning(f"Client error fetching {url}: {e}")

            except ValueError as e:
                self.stats['failed_requests'] += 1
                error_msg = f"Invalid URL: {str(e)}"
                self.logger.warning(f"Invalid URL {url}: {e}")

            return FetchResult(
                url=url,
                status_code=0,
                error=error_msg,
                fetch_time=time.time() - start_time
            )

    async def _request(self, url: str, auth: Optional[BasicAuth], start_time: float) -> FetchResult:
        if self.session is None:
            raise RuntimeError("WebFetcher.start() must be called before fetch()")

        async with self.session.get(url, auth=auth) as response:
            headers = dict(response.headers)
            content_type = response.headers.get('content-type', '')

            if not 200 <= response.status < 300:
                return FetchResult(
                    url=url,
                    status_code=response.status,
                    headers=headers,
                    content_type=content_type,
                    error=f"HTTP {response.status}",
                    fetch_time=time.time() - start_time
                )

            content = await self._read_content_safely(response)
            return FetchResult(
                url=url,
                status_code=response.status,
                content=content,
                headers=headers,
                content_type=content_type,
                fetch_time=time.time() - start_time
            )

    def _answer_challenge(self, url: str, headers: Dict[str, str]) -> Optional[BasicAuth]:
        challenge = None
        for name, value in headers.items():
            if name.lower() == 'www-authenticate':
                challenge = value
                break

        realm = parse_basic_realm(challenge)
        if realm is None:
            return None

        self.stats['auth_challenges'] += 1
        credentials = self.credential_provider.credentials_for(realm)
        if credentials is None:
            self.logger.info(f"No credentials available for realm {realm!r} at {url}")
            return None

        username, password = credentials
        self.logger.debug(f"Answering basic-auth challenge for realm {realm!r} at {url}")
        return BasicAuth(username, password)

    async def _read_content_safely(self, response) -> bytes:
        """Read the response body in chunks, enforcing the size limit."""
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            raise ContentTooLarge(f"{content_length} bytes exceeds limit of {self.max_content_size}")

        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            size += len(chunk)
            if size > self.max_content_size:
                raise ContentTooLarge(f"body exceeded limit of {self.max_content_size} bytes")
            chunks.append(chunk)
        return b''.join(chunks)

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
