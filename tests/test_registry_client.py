"""Tests for the shared transport and the registry client."""

import asyncio

import pytest

aiohttp_mod = pytest.importorskip("aiohttp")

import aiohttp.test_utils
from aiohttp import web

from fakes import FakeRegistry, make_package, serve
from modulefast.errors import OperationCancelledError, PackageNotFoundError, RegistryTransportError
from modulefast.registry import http
from modulefast.registry.client import RegistryClient


def _counting_app(routes):
    """Build an app from {path: handler} and count hits per path."""
    hits = {}
    app = web.Application()

    def _wrap(path, handler):
        async def _handler(request):
            hits[path] = hits.get(path, 0) + 1
            return await handler(request)
        return _handler

    for path, handler in routes.items():
        app.router.add_get(path, _wrap(path, handler))
    return app, hits


class TestServiceIndex:
    """Tests for service index discovery."""

    def test_registration_url(self):
        """The registration base comes from the service index; ids are lowercased and quoted."""
        registry = FakeRegistry()

        async def _run():
            async with serve(registry) as source:
                client = RegistryClient(source)
                base = await client.registration_base()
                assert base.endswith("/registration/")
                url = await client.registration_url("Contoso Tools")
                assert url == f"{base}contoso%20tools/index.json"
                await client.registration_base()
                assert registry.count("/index.json") == 1

        asyncio.run(_run())

    def test_missing_registration_resource(self):
        """A service index without a registration resource is a transport error."""
        async def _index(request):
            return web.json_response({"resources": [{"@id": "x", "@type": "SearchQueryService"}]})

        async def _run():
            app, _ = _counting_app({"/index.json": _index})
            async with aiohttp.test_utils.TestServer(app) as ts:
                try:
                    client = RegistryClient(f"http://{ts.host}:{ts.port}/index.json")
                    with pytest.raises(RegistryTransportError):
                        await client.registration_base()
                finally:
                    await http.reset()

        asyncio.run(_run())

    def test_registration_index_and_download(self):
        """Registration documents and package bodies come through the client."""
        registry = FakeRegistry()
        body = make_package("Contoso.Tools", "1.0.0")
        registry.add("Contoso.Tools", "1.0.0", body=body)

        async def _run():
            async with serve(registry) as source:
                async with RegistryClient(source) as client:
                    index = await client.registration_index("Contoso.Tools")
                    leaf = index["items"][0]["items"][0]
                    assert leaf["catalogEntry"]["version"] == "1.0.0"
                    assert await client.download(leaf["packageContent"]) == body

        asyncio.run(_run())


class TestResponseCache:
    """Tests for the URL-keyed response cache."""

    def test_concurrent_callers_share_one_request(self):
        """Concurrent and later requests for one URL hit the network once."""
        async def _doc(request):
            await asyncio.sleep(0.05)
            return web.json_response({"ok": True})

        async def _run():
            app, hits = _counting_app({"/doc.json": _doc})
            async with aiohttp.test_utils.TestServer(app) as ts:
                try:
                    url = f"http://{ts.host}:{ts.port}/doc.json"
                    results = await asyncio.gather(*(http.fetch_json(url) for _ in range(5)))
                    assert results == [{"ok": True}] * 5
                    assert await http.fetch_json(url) == {"ok": True}
                    assert hits["/doc.json"] == 1
                    assert http.cache_size() == 1

                    http.clear_cache()
                    await http.fetch_json(url)
                    assert hits["/doc.json"] == 2
                finally:
                    await http.reset()
            assert http.cache_size() == 0

        asyncio.run(_run())

    def test_failures_are_evicted(self):
        """A failed fetch is not cached, so the next call retries."""
        calls = {"n": 0}

        async def _flaky(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return web.Response(status=503, text="busy")
            return web.json_response({"ok": True})

        async def _run():
            app, hits = _counting_app({"/flaky.json": _flaky})
            async with aiohttp.test_utils.TestServer(app) as ts:
                try:
                    url = f"http://{ts.host}:{ts.port}/flaky.json"
                    with pytest.raises(RegistryTransportError) as exc_info:
                        await http.fetch_json(url)
                    assert exc_info.value.status == 503
                    assert "/flaky.json" in str(exc_info.value)
                    assert await http.fetch_json(url) == {"ok": True}
                    assert hits["/flaky.json"] == 2
                finally:
                    await http.reset()

        asyncio.run(_run())

    def test_not_found_and_bad_json(self):
        """404 is NotFound; an undecodable body is a transport error."""
        async def _missing(request):
            return web.Response(status=404)

        async def _garbage(request):
            return web.Response(text="<html>not json</html>")

        async def _run():
            app, _ = _counting_app({"/missing.json": _missing, "/garbage.json": _garbage})
            async with aiohttp.test_utils.TestServer(app) as ts:
                try:
                    base = f"http://{ts.host}:{ts.port}"
                    with pytest.raises(PackageNotFoundError):
                        await http.fetch_json(f"{base}/missing.json")
                    with pytest.raises(RegistryTransportError):
                        await http.fetch_json(f"{base}/garbage.json")
                finally:
                    await http.reset()

        asyncio.run(_run())

    def test_timeout(self):
        """A request exceeding its timeout is a transport error."""
        async def _slow(request):
            await asyncio.sleep(1)
            return web.json_response({})

        async def _run():
            app, _ = _counting_app({"/slow.json": _slow})
            async with aiohttp.test_utils.TestServer(app) as ts:
                try:
                    with pytest.raises(RegistryTransportError, match="timed out"):
                        await http.fetch_json(f"http://{ts.host}:{ts.port}/slow.json", timeout=0.1)
                finally:
                    await http.reset()

        asyncio.run(_run())


class TestCancellation:
    """Tests for cancel-token handling."""

    def test_waiter_cancel_leaves_shared_fetch_running(self):
        """A cancelled waiter gives up without cancelling the fetch other callers share."""
        async def _run():
            release = asyncio.Event()

            async def _held(request):
                await release.wait()
                return web.json_response({"ok": True})

            app, hits = _counting_app({"/held.json": _held})
            async with aiohttp.test_utils.TestServer(app) as ts:
                try:
                    url = f"http://{ts.host}:{ts.port}/held.json"
                    cancel = asyncio.Event()
                    cancelled = asyncio.ensure_future(http.fetch_json(url, cancel=cancel))
                    patient = asyncio.ensure_future(http.fetch_json(url))
                    await asyncio.sleep(0.05)
                    cancel.set()
                    with pytest.raises(OperationCancelledError):
                        await cancelled
                    release.set()
                    assert await patient == {"ok": True}
                    assert hits["/held.json"] == 1
                finally:
                    release.set()
                    await http.reset()

        asyncio.run(_run())

    def test_already_cancelled(self):
        """A set token fails fast."""
        async def _run():
            cancel = asyncio.Event()
            cancel.set()
            loop_future = asyncio.get_running_loop().create_future()
            with pytest.raises(OperationCancelledError):
                await http.wait_cancellable(loop_future, cancel)
            loop_future.cancel()

        asyncio.run(_run())


class TestSessionLifecycle:
    """Tests for the process-wide session."""

    def test_session_reused_until_reset(self):
        async def _run():
            first = await http.get_session()
            assert await http.get_session() is first
            await http.reset()
            assert first.closed
            second = await http.get_session()
            assert second is not first
            await http.close_session()
            assert second.closed

        asyncio.run(_run())
