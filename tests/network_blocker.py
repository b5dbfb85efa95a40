from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from config import (
    OSRM_BASE_URL,
    OSRM_FALLBACK_URLS,
    OVERPASS_API_URL,
    OVERPASS_FALLBACK_URLS,
)

if TYPE_CHECKING:
    import pytest

FORBIDDEN_HOSTS = {
    "overpass-api.de",
    "overpass.kumi.systems",
    "maps.mail.ru",
    "router.project-osrm.org",
}


def _configured_hosts() -> set[str]:
    urls = [OVERPASS_API_URL, *OVERPASS_FALLBACK_URLS, OSRM_BASE_URL, *OSRM_FALLBACK_URLS]
    return {(urlparse(url).hostname or "").lower() for url in urls} - {""}


def _is_blocked_url(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return False
    forbidden = FORBIDDEN_HOSTS | _configured_hosts()
    if host in forbidden:
        return True
    return any(host.endswith(f".{item}") for item in forbidden)


def install_network_blocker(monkeypatch: pytest.MonkeyPatch) -> None:
    import aiohttp

    def _aiohttp_block(self, method: str, url: str, *args: Any, **kwargs: Any) -> Any:
        if _is_blocked_url(str(url)):
            msg = f"Blocked external host: {url}"
            raise RuntimeError(msg)
        return _orig_aiohttp_request(self, method, url, *args, **kwargs)

    _orig_aiohttp_request = aiohttp.ClientSession._request
    monkeypatch.setattr(aiohttp.ClientSession, "_request", _aiohttp_block, raising=True)
