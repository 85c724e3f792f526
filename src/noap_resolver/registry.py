"""Registry client: the name -> source URL fallback of resolver dispatch."""

import asyncio
import logging
from urllib.parse import quote

import requests

from .config import ResolverConfig
from .runtime import RuntimeCache

logger = logging.getLogger(__name__)


class Registry:
    """
    Looks package names up in the configured alias table, then over HTTP.

    The HTTP registry answers ``GET <registry_url>/packages/<name>`` with
    ``{"name": ..., "url": ...}``; a 404 means the name is unknown. Successful
    HTTP lookups are memoized in the runtime cache.
    """

    def __init__(self, config: ResolverConfig, runtime: RuntimeCache | None = None):
        self.config = config
        self.runtime = runtime or RuntimeCache()

    async def lookup(self, name: str) -> str | None:
        """Resolve a registry name to a source URL, or None if unknown."""
        if name in self.config.registry:
            return self.config.registry[name]

        if name in self.runtime.lookups:
            return self.runtime.lookups[name]

        if not self.config.registry_url:
            return None

        url = await asyncio.to_thread(self._fetch, name)
        if url:
            self.runtime.lookups[name] = url
        return url

    def _fetch(self, name: str) -> str | None:
        endpoint = f"{self.config.registry_url.rstrip('/')}/packages/{quote(name, safe='')}"
        logger.debug(f"Registry lookup: {endpoint}")

        response = requests.get(endpoint, timeout=self.config.request_timeout)
        if response.status_code == 404:
            logger.debug(f"Package {name} not found in registry")
            return None
        response.raise_for_status()

        entry = response.json()
        if not isinstance(entry, dict):
            return None
        return entry.get("url")

    def clear_cache(self, name: str | None = None) -> None:
        if name is None:
            self.runtime.lookups.clear()
        else:
            self.runtime.lookups.pop(name, None)

    def reset_cache(self) -> None:
        self.runtime.lookups.clear()
