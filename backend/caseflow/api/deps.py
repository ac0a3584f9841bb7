"""Request-scoped dependencies shared by the API routers."""

import asyncio
import logging
from functools import partial

from fastapi import Header, Request

from caseflow.access import Principal
from caseflow.dedup.service import CommitWindow, DeduplicationService
from caseflow.errors import AuthenticationRequired, RequestTimeout
from caseflow.security import decode_access_token

logger = logging.getLogger(__name__)


def get_service(request: Request) -> DeduplicationService:
    return request.app.state.dedup_service


def get_principal(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Principal:
    """Decode ``Authorization: Bearer <token>`` into the acting principal."""
    if not authorization:
        raise AuthenticationRequired()
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationRequired("Invalid Authorization format")

    secret = get_service(request).settings.auth_secret
    principal = decode_access_token(parts[1], secret)
    if principal is None:
        logger.warning("Rejected bearer token: bad signature or expired")
        raise AuthenticationRequired("Invalid or expired token")
    return principal


async def run_blocking(request: Request, fn, *args, **kwargs):
    """Run a blocking service call off the event loop, bounded by the request timeout."""
    timeout = request.app.state.request_timeout
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(partial(fn, *args, **kwargs)), timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.error(f"{getattr(fn, '__name__', fn)} exceeded the {timeout}s request timeout")
        raise RequestTimeout() from None


async def run_write(request: Request, fn, *args, **kwargs):
    """Like ``run_blocking`` for a write that takes ``commit_window``.

    On timeout the window is expired so the worker rolls back instead of
    committing behind a 504. If the worker already claimed its commit, the
    real outcome is awaited and returned.
    """
    timeout = request.app.state.request_timeout
    window = CommitWindow()
    task = asyncio.ensure_future(
        asyncio.to_thread(partial(fn, *args, commit_window=window, **kwargs))
    )
    # An expired write ends in RequestTimeout that nobody awaits
    task.add_done_callback(lambda t: t.cancelled() or t.exception())
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except asyncio.TimeoutError:
        if window.expire():
            logger.error(f"{getattr(fn, '__name__', fn)} exceeded the {timeout}s request timeout")
            raise RequestTimeout() from None
        logger.warning(f"{getattr(fn, '__name__', fn)} passed the timeout while committing")
        return await task
