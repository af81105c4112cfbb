"""HTTP middleware establishing the actor context per request."""

from typing import Awaitable, Callable, Mapping, Optional

from fastapi import Request, Response

from papertrail.config import PaperTrailSettings
from papertrail.context import actor_context

ACTOR_HEADER = "X-Actor-ID"

CallNext = Callable[[Request], Awaitable[Response]]


def actor_context_middleware(
    header: str = ACTOR_HEADER,
    meta_data_headers: Optional[Mapping[str, str]] = None,
    config: Optional[PaperTrailSettings] = None,
) -> Callable[[Request, CallNext], Awaitable[Response]]:
    """
    Build an ``app.middleware("http")`` function binding the request's actor.

    ``meta_data_headers`` maps metadata field names to request headers.
    Mutations flushed while handling the request record that actor.
    """
    meta_data_headers = dict(meta_data_headers or {})

    async def middleware(request: Request, call_next: CallNext) -> Response:
        actor_id = request.headers.get(header) or None
        meta_data = {
            field: request.headers[name]
            for field, name in meta_data_headers.items()
            if name in request.headers
        }
        with actor_context(actor_id, meta_data or None, config=config):
            return await call_next(request)

    return middleware
