"""Shared aiohttp session for the Overpass and OSRM clients.

One session is kept per process and event loop. A session inherited
across a fork or bound to another loop is replaced on next use.
"""

from __future__ import annotations

import asyncio
import logging
import os

import aiohttp

from core.constants import (
    HTTP_CONNECTION_LIMIT,
    HTTP_TIMEOUT_CONNECT,
    HTTP_TIMEOUT_SOCK_READ,
    HTTP_TIMEOUT_TOTAL,
    HTTP_USER_AGENT,
)

logger = logging.getLogger(__name__)


class SessionState:
    """State container for aiohttp session to avoid global variables."""

    session: aiohttp.ClientSession | None = None
    session_owner_pid: int | None = None


def build_session() -> aiohttp.ClientSession:
    """New session with the client-wide timeouts, headers and pool limit."""
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(
            total=HTTP_TIMEOUT_TOTAL,
            connect=HTTP_TIMEOUT_CONNECT,
            sock_read=HTTP_TIMEOUT_SOCK_READ,
        ),
        headers={"User-Agent": HTTP_USER_AGENT, "Accept": "application/json"},
        connector=aiohttp.TCPConnector(
            limit=HTTP_CONNECTION_LIMIT,
            enable_cleanup_closed=True,
        ),
    )


def _is_reusable(session: aiohttp.ClientSession) -> bool:
    if session.closed or SessionState.session_owner_pid != os.getpid():
        return False
    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return True
    return session.loop is current_loop and not session.loop.is_closed()


async def get_session() -> aiohttp.ClientSession:
    """Get or create the shared ClientSession for this process and loop."""
    session = SessionState.session
    if session is not None and _is_reusable(session):
        return session

    if session is not None:
        logger.info("Replacing stale HTTP session (pid or event loop changed)")
        if SessionState.session_owner_pid == os.getpid() and not session.closed:
            try:
                if not session.loop.is_closed():
                    await session.close()
            except (aiohttp.ClientError, RuntimeError) as e:
                logger.warning("Error closing stale session: %s", e)

    SessionState.session = build_session()
    SessionState.session_owner_pid = os.getpid()
    logger.debug("Created new aiohttp session for process %s", os.getpid())
    return SessionState.session


async def cleanup_session() -> None:
    """Close the shared session for the current process."""
    session = SessionState.session
    if session is not None and not session.closed:
        await session.close()
        logger.info("Closed aiohttp session for process %s", os.getpid())

    SessionState.session = None
    SessionState.session_owner_pid = None
