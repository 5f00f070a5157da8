"""ASGI plumbing that puts every response through the modem throttle."""

import asyncio
from typing import Optional
from urllib.parse import parse_qs

from fastapi import Request

from .throttle import ModemProfile, SinkClosed, ThrottledSink

REDIRECT_STATUSES = {301, 302, 303, 307, 308}


class AsgiSink:
    """ResponseSink over a raw ASGI ``send`` callable.

    The ``http.response.start`` message is held back until the first body
    bytes go out, so the headers of a throttled page arrive after the modem
    latency just like the body does.
    """

    def __init__(self, send):
        self._send = send
        self._start: Optional[dict] = None
        self.closed = False

    def start(self, message: dict) -> None:
        self._start = message

    async def flush_start(self) -> None:
        if self._start is None:
            return
        message, self._start = self._start, None
        await self._forward(message)

    async def write(self, chunk: bytes) -> bool:
        await self._emit(chunk, more_body=True)
        return True

    async def finalize(self, chunk: bytes = b"") -> None:
        await self._emit(chunk, more_body=False)

    def close(self) -> None:
        self.closed = True

    async def _emit(self, chunk: bytes, more_body: bool) -> None:
        await self.flush_start()
        await self._forward({
            "type": "http.response.body",
            "body": chunk,
            "more_body": more_body,
        })

    async def _forward(self, message: dict) -> None:
        if self.closed:
            raise SinkClosed("connection already closed")
        try:
            await self._send(message)
        except OSError as e:
            self.closed = True
            raise SinkClosed(str(e)) from e


def is_bypass_request(scope, bypass_param: str) -> bool:
    """True when the query string opts out of throttling (e.g. ?turbo=1)."""
    query = scope.get("query_string", b"").decode("latin-1")
    values = parse_qs(query).get(bypass_param, [])
    return "1" in values


class ModemThrottleMiddleware:
    """Pure ASGI middleware that drips every response body over a modem.

    Redirects and ``?turbo=1`` requests pass through untouched.
    """

    def __init__(
        self,
        app,
        profile: ModemProfile,
        enabled: bool = True,
        bypass_param: str = "turbo",
    ):
        self.app = app
        self.profile = profile
        self.enabled = enabled
        self.bypass_param = bypass_param

    async def __call__(self, scope, receive, send):
        if (
            scope["type"] != "http"
            or not self.enabled
            or is_bypass_request(scope, self.bypass_param)
        ):
            await self.app(scope, receive, send)
            return

        sink = AsgiSink(send)
        throttled = ThrottledSink(sink, self.profile)

        async def throttled_send(message):
            kind = message["type"]
            if kind == "http.response.start":
                sink.start(message)
                if message["status"] in REDIRECT_STATUSES:
                    throttled.bypass()
                    await sink.flush_start()
            elif kind == "http.response.body":
                body = message.get("body", b"")
                if message.get("more_body", False):
                    await throttled.write(body)
                else:
                    await throttled.finalize(body)
            else:
                # Extensions (trailers, pathsend) must follow the headers
                await sink.flush_start()
                await send(message)

        await self.app(scope, receive, throttled_send)
        await self._wait_for_drip(throttled, sink, receive)

    @staticmethod
    async def _wait_for_drip(throttled: ThrottledSink, sink: AsgiSink, receive):
        if not throttled.dripping:
            return

        async def listen_for_disconnect():
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    sink.close()
                    throttled.cancel()
                    return

        watcher = asyncio.ensure_future(listen_for_disconnect())
        try:
            await throttled.drained()
        finally:
            watcher.cancel()


async def no_store_html(request: Request, call_next):
    """HTML pages always re-download; images and CSS cache like a 90s browser."""
    response = await call_next(request)
    path = request.url.path
    if path == "/" or path.endswith(".html"):
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        response.headers["Pragma"] = "no-cache"
        response.headers["Expires"] = "0"
    return response
