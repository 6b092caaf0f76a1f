"""Process-wide HTTP transport and response cache for registry access.

One ``aiohttp.ClientSession`` serves every request of a run so connections
are pooled and reused. It is created on first use and lives until
:func:`close_session` or :func:`reset`. Metadata responses are cached for the
same lifetime, keyed by exact URL; the cache stores the fetch task itself, so
callers asking for a URL that is already in flight share one request.
"""
from __future__ import annotations

import asyncio
import io
import json
import logging
from typing import Any, Awaitable, Dict, Iterable, Optional

import aiohttp

from ..common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from ..constants import Constants
from ..errors import OperationCancelledError, PackageNotFoundError, RegistryTransportError

logger = logging.getLogger(__name__)

HEADERS_JSON = {"Accept": "application/json"}

_session: Optional[aiohttp.ClientSession] = None
_session_loop: Optional[asyncio.AbstractEventLoop] = None
_cache: Dict[str, "asyncio.Future[Any]"] = {}


async def get_session() -> aiohttp.ClientSession:
    """Return the shared session, creating it for the running loop if needed."""
    global _session, _session_loop  # pylint: disable=global-statement
    loop = asyncio.get_running_loop()
    if _session is not None and (_session.closed or _session_loop is not loop):
        # A session from a finished loop cannot be reused or closed here.
        _session = None
        _cache.clear()
    if _session is None:
        connector = aiohttp.TCPConnector(limit=Constants.CONNECTION_LIMIT)
        _session = aiohttp.ClientSession(
            connector=connector,
            headers={"User-Agent": Constants.USER_AGENT},
        )
        _session_loop = loop
    return _session


async def close_session() -> None:
    """Close the shared session; the next request opens a new one."""
    global _session, _session_loop  # pylint: disable=global-statement
    session, _session, _session_loop = _session, None, None
    if session is not None and not session.closed:
        await session.close()


def clear_cache() -> None:
    """Forget every cached response."""
    _cache.clear()


def cache_size() -> int:
    return len(_cache)


async def reset() -> None:
    """Tear down the transport: cancel unfinished fetches, clear the cache, close the session."""
    pending = [task for task in _cache.values() if not task.done()]
    clear_cache()
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    await close_session()


async def cancel_fetches(urls: Iterable[str]) -> None:
    """Cancel the unfinished cached fetches of ``urls`` and wait for them to settle.

    Only for callers that own every waiter on those URLs; cancelled tasks
    evict themselves from the cache.
    """
    pending = [task for task in (_cache.get(url) for url in set(urls)) if task is not None and not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def wait_cancellable(future: "asyncio.Future[Any]", cancel: Optional[asyncio.Event], *, target: str = "") -> Any:
    """Await a shared future, giving up (without cancelling it) when ``cancel`` is set."""
    if cancel is None:
        return await asyncio.shield(future)
    if cancel.is_set():
        raise OperationCancelledError("Operation cancelled", source=target or None)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({future, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if future in done:
        return future.result()
    raise OperationCancelledError("Operation cancelled", source=target or None)


async def run_cancellable(coro: Awaitable[Any], cancel: Optional[asyncio.Event], *, target: str = "") -> Any:
    """Run a private coroutine, cancelling it when ``cancel`` is set or the caller is cancelled."""
    task = asyncio.ensure_future(coro)
    try:
        return await wait_cancellable(task, cancel, target=target)
    except BaseException:
        task.cancel()
        raise


def _evict_failed(url: str, task: "asyncio.Future[Any]") -> None:
    if task.cancelled() or task.exception() is not None:
        if _cache.get(url) is task:
            del _cache[url]


def _raise_for_status(status: int, url: str) -> None:
    if status == 404:
        raise PackageNotFoundError("Registry returned 404 Not Found", source=safe_url(url))
    if status != 200:
        raise RegistryTransportError(f"Registry returned HTTP {status}", status=status, source=safe_url(url))


async def _fetch_json(url: str, timeout: float) -> Any:
    session = await get_session()
    target = safe_url(url)
    with Timer() as t:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(event="http_request", component="http", action="GET", target=target),
            )
        try:
            async with session.get(url, headers=HEADERS_JSON, timeout=aiohttp.ClientTimeout(total=timeout)) as res:
                _raise_for_status(res.status, url)
                body = await res.read()
        except asyncio.TimeoutError as exc:
            raise RegistryTransportError(f"Request timed out after {timeout} seconds", source=target) from exc
        except aiohttp.ClientError as exc:
            raise RegistryTransportError(f"Connection error: {exc}", source=target) from exc

    if is_debug_enabled(logger):
        logger.debug(
            "HTTP response ok",
            extra=extra_context(
                event="http_response", component="http", action="GET", outcome="success",
                duration_ms=t.duration_ms(), target=target,
            ),
        )
    try:
        return json.loads(body)
    except ValueError as exc:
        raise RegistryTransportError("Registry returned invalid JSON", source=target) from exc


async def fetch_json(
    url: str,
    *,
    cancel: Optional[asyncio.Event] = None,
    timeout: float = Constants.REQUEST_TIMEOUT,
) -> Any:
    """GET a JSON document through the shared cache.

    Raises PackageNotFoundError on 404 and RegistryTransportError for every
    other failure. Failed fetches are evicted so a later call retries.
    """
    task = _cache.get(url)
    if task is not None and task.get_loop() is not asyncio.get_running_loop():
        clear_cache()
        task = None
    if task is None:
        task = asyncio.ensure_future(_fetch_json(url, timeout))
        task.add_done_callback(lambda done, key=url: _evict_failed(key, done))
        _cache[url] = task
    elif is_debug_enabled(logger):
        logger.debug(
            "HTTP cache hit",
            extra=extra_context(event="cache_hit", component="http", action="GET", target=safe_url(url)),
        )
    return await wait_cancellable(task, cancel, target=safe_url(url))


async def _fetch_bytes(url: str, timeout: float) -> bytes:
    session = await get_session()
    target = safe_url(url)
    buffer = io.BytesIO()
    client_timeout = aiohttp.ClientTimeout(total=None, sock_connect=timeout, sock_read=timeout)
    with Timer() as t:
        try:
            async with session.get(url, timeout=client_timeout) as res:
                _raise_for_status(res.status, url)
                async for chunk in res.content.iter_chunked(Constants.DOWNLOAD_CHUNK_SIZE):
                    buffer.write(chunk)
        except asyncio.TimeoutError as exc:
            raise RegistryTransportError(f"Download stalled for {timeout} seconds", source=target) from exc
        except aiohttp.ClientError as exc:
            raise RegistryTransportError(f"Download failed: {exc}", source=target) from exc
    if is_debug_enabled(logger):
        logger.debug(
            "Download complete",
            extra=extra_context(
                event="download", component="http", outcome="success",
                bytes=buffer.tell(), duration_ms=t.duration_ms(), target=target,
            ),
        )
    return buffer.getvalue()


async def fetch_bytes(
    url: str,
    *,
    cancel: Optional[asyncio.Event] = None,
    timeout: float = Constants.REQUEST_TIMEOUT,
) -> bytes:
    """Stream a package body into memory. Downloads are never cached."""
    return await run_cancellable(_fetch_bytes(url, timeout), cancel, target=safe_url(url))
