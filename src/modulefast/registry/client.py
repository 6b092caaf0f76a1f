"""Registry client: NuGet v3 service index, registration documents and package downloads."""
from __future__ import annotations

import asyncio
import logging
import urllib.parse
from typing import Any, Dict, Iterable, Optional

from ..common.logging_utils import extra_context, is_debug_enabled, safe_url
from ..constants import Constants
from ..errors import RegistryTransportError
from . import http

logger = logging.getLogger(__name__)


class RegistryClient:
    """Async access to one NuGet v3 feed through the shared transport."""

    def __init__(self, source: str = Constants.DEFAULT_SOURCE, timeout: float = Constants.REQUEST_TIMEOUT):
        """Initialize the registry client.

        Args:
            source: URL of the feed's service index (``index.json``).
            timeout: Per-request timeout in seconds.
        """
        self.source = source
        self._timeout = timeout
        self._registration_base: Optional[str] = None

    async def get_json(self, url: str, cancel: Optional[asyncio.Event] = None) -> Any:
        """Fetch a JSON document through the shared response cache."""
        return await http.fetch_json(url, cancel=cancel, timeout=self._timeout)

    async def service_index(self, cancel: Optional[asyncio.Event] = None) -> Dict[str, Any]:
        data = await self.get_json(self.source, cancel)
        if not isinstance(data, dict):
            raise RegistryTransportError("Service index is not a JSON object", source=safe_url(self.source))
        return data

    async def registration_base(self, cancel: Optional[asyncio.Event] = None) -> str:
        """Return the RegistrationsBaseUrl advertised by the service index."""
        if self._registration_base is not None:
            return self._registration_base

        resources = (await self.service_index(cancel)).get("resources") or []
        by_type = {r.get("@type"): r.get("@id") for r in resources if isinstance(r, dict)}
        for resource_type in Constants.REGISTRATION_TYPES:
            base_url = by_type.get(resource_type)
            if base_url:
                base_url = urllib.parse.urljoin(self.source, base_url)
                self._registration_base = base_url if base_url.endswith("/") else f"{base_url}/"
                if is_debug_enabled(logger):
                    logger.debug(
                        "Registration base discovered",
                        extra=extra_context(event="discovery", component="client", outcome="success",
                                            resource_type=resource_type, target=safe_url(self._registration_base)),
                    )
                return self._registration_base
        raise RegistryTransportError(
            "Service index does not advertise a RegistrationsBaseUrl resource",
            source=safe_url(self.source),
        )

    async def registration_url(self, name: str, cancel: Optional[asyncio.Event] = None) -> str:
        base_url = await self.registration_base(cancel)
        encoded_id = urllib.parse.quote(name.lower(), safe="")
        return f"{base_url}{encoded_id}/index.json"

    async def registration_index(self, name: str, cancel: Optional[asyncio.Event] = None) -> Dict[str, Any]:
        url = await self.registration_url(name, cancel)
        data = await self.get_json(url, cancel)
        if not isinstance(data, dict):
            raise RegistryTransportError("Registration index is not a JSON object", source=safe_url(url))
        return data

    async def download(self, url: str, cancel: Optional[asyncio.Event] = None) -> bytes:
        """Download a package body into memory."""
        return await http.fetch_bytes(url, cancel=cancel, timeout=self._timeout)

    @staticmethod
    async def cancel_fetches(urls: Iterable[str]) -> None:
        """Abort metadata fetches still in flight for ``urls``."""
        await http.cancel_fetches(urls)

    @staticmethod
    def clear_cache() -> None:
        """Drop every cached metadata response of the session."""
        http.clear_cache()

    async def close(self) -> None:
        """Tear down the shared transport and its cache."""
        await http.reset()

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
