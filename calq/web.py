"""FastAPI / Starlette integration.

    app.add_middleware(CalqMiddleware)

    @app.post("/signup")
    def signup(calq: CalqClient = Depends(calq_session())):
        calq.identify(user.id)

The dependency hands every handler of a request the same client; the
middleware writes the state cookie onto the response and then sends the
queued API calls, even when the handler raises.
"""
from typing import Any, Awaitable, Callable, Optional

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from calq.client import CalqClient, RequestContext, resolve
from calq.config import settings
from calq.cookies import ResponseCookies
from calq.errors import CalqError, StateError
from calq.logging_config import get_logger

CONTEXT_STATE_KEY = "calq_context"
MIDDLEWARE_STATE_KEY = "calq_middleware"
FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def get_request_context(request: Request) -> RequestContext:
    """The RequestContext for ``request``, built once and kept on ``request.state``."""
    context = getattr(request.state, CONTEXT_STATE_KEY, None)
    if context is not None:
        return context

    form_params: dict[str, str] = {}
    content_type = request.headers.get("content-type", "")
    if request.method == "POST" and content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        form_params = {k: v for k, v in form.items() if isinstance(v, str)}

    context = RequestContext(
        cookies=ResponseCookies(request.cookies),
        user_agent=request.headers.get("user-agent"),
        query_params=dict(request.query_params),
        form_params=form_params,
        forwarded_for=request.headers.get("x-forwarded-for"),
        real_ip=request.headers.get("x-real-ip"),
        remote_addr=request.client.host if request.client else None,
    )
    setattr(request.state, CONTEXT_STATE_KEY, context)
    return context


def calq_session(write_key: Optional[str] = None, **options: Any) -> Callable[[Request], Awaitable[CalqClient]]:
    """Build a FastAPI dependency returning the request's CalqClient.

    ``options`` are passed to CalqClient (cookie_name, cookie_domain,
    cookie_expires_days, api_processor).

    The app must install ``CalqMiddleware``: it is what writes the cookie and
    sends the queued calls, so the dependency raises ``StateError`` without it.
    """

    async def dependency(request: Request) -> CalqClient:
        if not getattr(request.state, MIDDLEWARE_STATE_KEY, False):
            raise StateError("CalqMiddleware must be installed to use calq_session()")
        context = await get_request_context(request)
        return resolve(write_key or settings.write_key, context, **options)

    return dependency


class CalqMiddleware(BaseHTTPMiddleware):
    """Commits the state cookie and flushes the request's session.

    The flush also runs when the handler raises, so calls tracked before the
    error are still sent; a failing flush is logged and the handler's error
    is the one that propagates.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        setattr(request.state, MIDDLEWARE_STATE_KEY, True)
        try:
            response = await call_next(request)
        except Exception as handler_error:
            context = getattr(request.state, CONTEXT_STATE_KEY, None)
            if context is not None and context.session is not None:
                try:
                    await run_in_threadpool(context.session.flush)
                except CalqError as flush_error:
                    get_logger().error(
                        "session_flush_failed",
                        path=request.url.path,
                        error=str(flush_error),
                        handler_error=repr(handler_error),
                    )
            raise

        context = getattr(request.state, CONTEXT_STATE_KEY, None)
        if context is None:
            return response
        context.cookies.apply(response)
        if context.session is not None:
            delivered = await run_in_threadpool(context.session.flush)
            get_logger().debug("session_flushed", path=request.url.path, count=len(delivered))
        return response
