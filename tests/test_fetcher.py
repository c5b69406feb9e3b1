"""Tests for sitemirror.crawler.fetcher against a local aiohttp server."""

from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp import BasicAuth, test_utils, web

from sitemirror.crawler.auth import StaticCredentialProvider, parse_basic_realm
from sitemirror.crawler.fetcher import FetchResult, WebFetcher


EXPECTED_AUTH = BasicAuth("alice", "s3cret").encode()


async def page(request):
    return web.Response(text='<a href="/next">next</a>', content_type="text/html")


async def image(request):
    return web.Response(body=b"GIF89a", content_type="image/gif")


async def missing(request):
    raise web.HTTPNotFound()


async def large(request):
    return web.Response(body=b"x" * 1000, content_type="application/octet-stream")


async def protected(request):
    if request.headers.get("Authorization") != EXPECTED_AUTH:
        return web.Response(status=401, headers={"WWW-Authenticate": 'Basic realm="members"'})
    return web.Response(text="secret page", content_type="text/html")


async def echo_agent(request):
    return web.Response(text=request.headers.get("User-Agent", ""), content_type="text/plain")


@pytest_asyncio.fixture
async def server():
    app = web.Application()
    app.router.add_get("/", page)
    app.router.add_get("/logo.gif", image)
    app.router.add_get("/missing", missing)
    app.router.add_get("/large", large)
    app.router.add_get("/members/", protected)
    app.router.add_get("/agent", echo_agent)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


def url(server, path):
    return str(server.make_url(path))


class TestFetch:
    @pytest.mark.asyncio
    async def test_html_page(self, server):
        async with WebFetcher(user_agent="test-agent") as fetcher:
            result = await fetcher.fetch(url(server, "/"))
        assert result.ok
        assert result.status_code == 200
        assert result.content == b'<a href="/next">next</a>'
        assert result.content_type.startswith("text/html")
        assert result.fetch_time >= 0

    @pytest.mark.asyncio
    async def test_binary_content_untouched(self, server):
        async with WebFetcher(user_agent="test-agent") as fetcher:
            result = await fetcher.fetch(url(server, "/logo.gif"))
        assert result.content == b"GIF89a"
        assert result.content_type == "image/gif"

    @pytest.mark.asyncio
    async def test_user_agent_sent(self, server):
        async with WebFetcher(user_agent="sitemirror-test/2.0") as fetcher:
            result = await fetcher.fetch(url(server, "/agent"))
        assert result.content == b"sitemirror-test/2.0"

    @pytest.mark.asyncio
    async def test_http_error(self, server):
        async with WebFetcher(user_agent="test-agent") as fetcher:
            result = await fetcher.fetch(url(server, "/missing"))
            stats = fetcher.get_stats()
        assert not result.ok
        assert result.status_code == 404
        assert result.error == "HTTP 404"
        assert result.content is None
        assert stats["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_size_limit(self, server):
        async with WebFetcher(user_agent="test-agent", max_content_size=100) as fetcher:
            result = await fetcher.fetch(url(server, "/large"))
        assert not result.ok
        assert result.status_code == 0
        assert "exceeds limit" in result.error

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        async with WebFetcher(user_agent="test-agent", request_timeout=5) as fetcher:
            result = await fetcher.fetch("http://127.0.0.1:1/")
        assert not result.ok
        assert result.status_code == 0
        assert result.error

    @pytest.mark.asyncio
    async def test_fetch_before_start(self):
        fetcher = WebFetcher(user_agent="test-agent")
        with pytest.raises(RuntimeError):
            await fetcher.fetch("http://127.0.0.1:1/")

    @pytest.mark.asyncio
    async def test_stats(self, server):
        async with WebFetcher(user_agent="test-agent") as fetcher:
            await fetcher.fetch(url(server, "/"))
            await fetcher.fetch(url(server, "/logo.gif"))
            stats = fetcher.get_stats()
        assert stats["total_requests"] == 2
        assert stats["successful_requests"] == 2
        assert stats["total_bytes_downloaded"] == len(b'<a href="/next">next</a>') + len(b"GIF89a")


class TestBasicAuth:
    @pytest.mark.asyncio
    async def test_challenge_answered(self, server):
        provider = StaticCredentialProvider("alice", "s3cret")
        async with WebFetcher(user_agent="test-agent", credential_provider=provider) as fetcher:
            result = await fetcher.fetch(url(server, "/members/"))
            stats = fetcher.get_stats()
        assert result.ok
        assert result.content == b"secret page"
        assert stats["auth_challenges"] == 1

    @pytest.mark.asyncio
    async def test_credentials_reused_for_host(self, server):
        provider = StaticCredentialProvider("alice", "s3cret")
        async with WebFetcher(user_agent="test-agent", credential_provider=provider) as fetcher:
            await fetcher.fetch(url(server, "/members/"))
            second = await fetcher.fetch(url(server, "/members/"))
            stats = fetcher.get_stats()
        assert second.ok
        assert stats["auth_challenges"] == 1

    @pytest.mark.asyncio
    async def test_no_provider_leaves_401(self, server):
        async with WebFetcher(user_agent="test-agent") as fetcher:
            result = await fetcher.fetch(url(server, "/members/"))
        assert result.status_code == 401
        assert result.error == "HTTP 401"

    @pytest.mark.asyncio
    async def test_wrong_realm_gets_no_credentials(self, server):
        provider = StaticCredentialProvider("alice", "s3cret", realms=["admins"])
        async with WebFetcher(user_agent="test-agent", credential_provider=provider) as fetcher:
            result = await fetcher.fetch(url(server, "/members/"))
        assert result.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_password(self, server):
        provider = StaticCredentialProvider("alice", "guess")
        async with WebFetcher(user_agent="test-agent", credential_provider=provider) as fetcher:
            result = await fetcher.fetch(url(server, "/members/"))
            assert fetcher._host_auth == {}
        assert result.status_code == 401


class TestRealmParsing:
    @pytest.mark.parametrize("header, realm", [
        ('Basic realm="members"', "members"),
        ('basic realm="Staff Area", charset="UTF-8"', "Staff Area"),
        ("Basic realm=intranet", "intranet"),
        ("Basic", ""),
        ('Digest realm="x", nonce="abc"', None),
        (None, None),
        ("", None),
    ])
    def test_parse(self, header, realm):
        assert parse_basic_realm(header) == realm

    def test_empty_username_means_no_credentials(self):
        assert StaticCredentialProvider("", "pw").credentials_for("any") is None


class TestFetchResult:
    def test_ok_requires_content(self):
        assert not FetchResult(url="http://x/", status_code=200).ok
        assert FetchResult(url="http://x/", status_code=200, content=b"").ok
        assert not FetchResult(url="http://x/", status_code=500, content=b"x", error="HTTP 500").ok
