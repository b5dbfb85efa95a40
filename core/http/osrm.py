"""
OSRM map-matching client.

Wraps the ``/match`` service with node annotations so matched paths can be
resolved back to OSM node ids. The per-request coordinate cap is enforced
by callers, which chunk long traces.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from config import OSRM_BASE_URL, OSRM_FALLBACK_URLS, OSRM_PROFILE
from core.exceptions import ExternalServiceException
from core.http.request import request_json
from core.http.retry import retry_async
from core.http.session import get_session

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

# Codes meaning "the trace could not be matched", not "the service failed".
NO_MATCH_CODES = frozenset({"NoMatch", "NoSegment"})


class OsrmClient:
    def __init__(
        self,
        endpoints: Sequence[str] | None = None,
        *,
        profile: str = OSRM_PROFILE,
        session: Any | None = None,
        max_retries: int = 2,
        timeout_s: float = 15.0,
        retry_delay: float = 1.0,
    ) -> None:
        if endpoints is None:
            endpoints = [OSRM_BASE_URL, *OSRM_FALLBACK_URLS]
        self._endpoints = [url.rstrip("/") for url in dict.fromkeys(endpoints) if url]
        self._profile = profile
        self._session = session
        self._max_retries = max_retries
        self._timeout_s = timeout_s
        self._retry_delay = retry_delay

    async def match(
        self,
        coordinates: Sequence[tuple[float, float]],
        *,
        timestamps: Sequence[int] | None = None,
    ) -> dict[str, Any]:
        """
        Match ``(lng, lat)`` coordinates to the road network.

        Returns the raw OSRM response. Unmatchable traces come back with
        empty ``matchings`` instead of raising.

        Raises:
            ExternalServiceException: when every endpoint failed.
        """
        if len(coordinates) < 2:
            msg = "OSRM match requires at least two coordinates."
            raise ExternalServiceException(msg, {"retryable": False})
        if timestamps is not None and len(timestamps) != len(coordinates):
            msg = "OSRM match timestamps must align with coordinates."
            raise ExternalServiceException(msg, {"retryable": False})

        path = ";".join(f"{lng:.6f},{lat:.6f}" for lng, lat in coordinates)
        params = {
            "annotations": "nodes",
            "geometries": "geojson",
            "overview": "full",
        }
        if timestamps is not None:
            params["timestamps"] = ";".join(str(int(ts)) for ts in timestamps)

        errors: list[str] = []
        for base_url in self._endpoints:
            url = f"{base_url}/match/v1/{self._profile}/{path}"
            try:
                data = await retry_async(
                    max_retries=self._max_retries,
                    retry_delay=self._retry_delay,
                )(self._get_match)(url, params)
            except ExternalServiceException as exc:
                logger.warning("OSRM endpoint %s failed: %s", base_url, exc.message)
                errors.append(f"{base_url}: {exc.message}")
                continue
            except (aiohttp.ClientError, TimeoutError) as exc:
                logger.warning("OSRM endpoint %s unreachable: %s", base_url, exc)
                errors.append(f"{base_url}: {exc}")
                continue
            return data

        msg = "OSRM unavailable: all endpoints failed"
        raise ExternalServiceException(msg, {"errors": errors, "retryable": False})

    async def _get_match(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        session = self._session or await get_session()
        data = await request_json(
            "GET",
            url,
            session=session,
            params=params,
            expected_status=(200, 400),
            service_name="OSRM match",
            timeout=aiohttp.ClientTimeout(total=self._timeout_s),
        )
        if not isinstance(data, dict):
            msg = "OSRM match error: unexpected response"
            raise ExternalServiceException(msg, {"url": url})
        code = data.get("code")
        if code in NO_MATCH_CODES:
            logger.debug("OSRM could not match trace: %s", code)
            return {"code": code, "matchings": [], "tracepoints": []}
        if code != "Ok":
            msg = f"OSRM match error: {code or 'unknown'}"
            raise ExternalServiceException(
                msg,
                {"url": url, "code": code, "message": data.get("message"), "retryable": False},
            )
        return data
