"""
ASGI middleware for the Book Heaven API.
"""

import structlog
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = structlog.get_logger(__name__)


class BodySizeLimitMiddleware:
    """
    Reject request bodies larger than ``max_body_bytes`` with 413.

    A declared Content-Length is checked up front. Bodies without one
    (chunked transfer) are read and counted before the application sees them,
    then replayed to it unchanged.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int):
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        content_length = headers.get(b"content-length")
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                response = JSONResponse({"message": "Invalid Content-Length header"}, status_code=400)
                await response(scope, receive, send)
                return

            if declared > self.max_body_bytes:
                await self._reject(scope, receive, send, declared)
                return

            await self.app(scope, receive, send)
            return

        messages = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            messages.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_body_bytes:
                await self._reject(scope, receive, send, received)
                return
            more_body = message.get("more_body", False)

        async def replay() -> Message:
            if messages:
                return messages.pop(0)
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size: int) -> None:
        logger.warning(
            "Request body too large",
            path=scope.get("path"),
            content_length=size,
            limit=self.max_body_bytes
        )
        response = JSONResponse({"message": "Request body too large"}, status_code=413)
        await response(scope, receive, send)
