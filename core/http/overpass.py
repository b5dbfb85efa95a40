"""
Overpass API client for road-graph queries.

Queries are sent to the primary endpoint first and then to each fallback
in order. Every endpoint gets its own bounded tenacity retry with a
per-attempt client timeout.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from config import OVERPASS_API_URL, OVERPASS_FALLBACK_URLS
from core.exceptions import ExternalServiceException
from core.http.request import request_json
from core.http.retry import retry_async
from core.http.session import get_session

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def build_around_query(lat: float, lng: float, radius_m: float, timeout_s: float) -> str:
    """Overpass QL selecting highway ways (and their nodes) around a point."""
    return (
        f"[out:json][timeout:{int(timeout_s)}];"
        f'way["highway"](around:{int(round(radius_m))},{lat:.6f},{lng:.6f});'
        "(._;>;);"
        "out body;"
    )


class OverpassClient:
    def __init__(
        self,
        endpoints: Sequence[str] | None = None,
        *,
        session: Any | None = None,
        max_retries: int = 2,
        timeout_s: float = 30.0,
        retry_delay: float = 1.0,
    ) -> None:
        if endpoints is None:
            endpoints = [OVERPASS_API_URL, *OVERPASS_FALLBACK_URLS]
        self._endpoints = [url for url in dict.fromkeys(endpoints) if url]
        self._session = session
        self._max_retries = max_retries
        self._timeout_s = timeout_s
        self._retry_delay = retry_delay

    @property
    def endpoints(self) -> list[str]:
        return list(self._endpoints)

    async def query_around(
        self,
        lat: float,
        lng: float,
        radius_m: float,
    ) -> list[dict[str, Any]]:
        """
        Return raw Overpass elements (ways and nodes) around a point.

        Raises:
            ExternalServiceException: when every endpoint failed.
        """
        query = build_around_query(lat, lng, radius_m, self._timeout_s)
        errors: list[str] = []
        for url in self._endpoints:
            try:
                data = await retry_async(
                    max_retries=self._max_retries,
                    retry_delay=self._retry_delay,
                )(self._post_query)(url, query)
            except ExternalServiceException as exc:
                logger.warning("Overpass endpoint %s failed: %s", url, exc.message)
                errors.append(f"{url}: {exc.message}")
                continue
            except (aiohttp.ClientError, TimeoutError) as exc:
                logger.warning("Overpass endpoint %s unreachable: %s", url, exc)
                errors.append(f"{url}: {exc}")
                continue
            elements = data.get("elements") if isinstance(data, dict) else None
            if not isinstance(elements, list):
                logger.warning("Overpass endpoint %s returned no elements", url)
                errors.append(f"{url}: unexpected response")
                continue
            logger.debug(
                "Overpass returned %d elements from %s (r=%.0fm)",
                len(elements),
                url,
                radius_m,
            )
            return elements

        msg = "Overpass unavailable: all endpoints failed"
        raise ExternalServiceException(msg, {"errors": errors, "retryable": False})

    async def _post_query(self, url: str, query: str) -> Any:
        session = self._session or await get_session()
        return await request_json(
            "POST",
            url,
            session=session,
            data={"data": query},
            service_name="Overpass",
            timeout=aiohttp.ClientTimeout(total=self._timeout_s),
        )
