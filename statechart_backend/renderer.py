"""
Diagram renderer - Turn PlantUML source into SVG through a Kroki server.

Rendered output is cached in memory, keyed by a hash of the source, so
re-rendering an unchanged diagram does not hit the network.
"""
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import DEFAULT_KROKI_URL

logger = logging.getLogger(__name__)


class RenderError(Exception):
    """The renderer answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Kroki error: {status_code} - {body}")


@dataclass(frozen=True)
class RenderResult:
    svg: str
    from_cache: bool


def cache_key(source: str) -> str:
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


class KrokiRenderer:
    """
    Render PlantUML via POST <base_url>/plantuml/svg.

    Transport failures (connection refused, timeouts) propagate as
    httpx.HTTPError; non-2xx answers raise RenderError.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_KROKI_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._cache: dict[str, str] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self):
        self._cache.clear()

    def render(self, puml_text: str) -> RenderResult:
        key = cache_key(puml_text)
        cached = self._cache.get(key)
        if cached is not None:
            return RenderResult(svg=cached, from_cache=True)

        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            response = client.post(
                f"{self.base_url}/plantuml/svg",
                content=puml_text.encode("utf-8"),
                headers={"Content-Type": "text/plain"},
            )

        if not response.is_success:
            logger.warning("Kroki returned %d for %d bytes of source", response.status_code, len(puml_text))
            raise RenderError(response.status_code, response.text)

        svg = response.text
        self._cache[key] = svg
        return RenderResult(svg=svg, from_cache=False)
