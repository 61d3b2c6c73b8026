"""
ASGI middleware negotiating the response media type from the Accept header.
"""
import logging

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from negotiate_asgi.config import NegotiationConfig
from negotiate_asgi.headers import preferred_media_types

logger = logging.getLogger(__name__)


class AcceptMiddleware:
    """
    Negotiates the media type of every HTTP request and stores the outcome
    in the request state:

        request.state.media_type            # most preferred, or None
        request.state.accepted_media_types  # all acceptable, in order

    Options are given either as a `NegotiationConfig` or as its fields:

        app.add_middleware(AcceptMiddleware, media_types=["application/json", "text/html"])
    """

    def __init__(
        self, app: ASGIApp, config: NegotiationConfig | None = None, **options
    ) -> None:
        if config is None:
            config = NegotiationConfig(**options)
        elif options:
            raise TypeError("pass either config or keyword options, not both")

        self.app = app
        self.config = config

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.config.is_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        accept = self.accept_header(scope)
        negotiated = preferred_media_types(accept, *self.config.media_types)
        logger.debug("Negotiated %r for Accept %r", negotiated, accept)

        state = scope.setdefault("state", {})
        state["accepted_media_types"] = negotiated
        state["media_type"] = negotiated[0] if negotiated else None

        if self.config.strict and not negotiated:
            response = PlainTextResponse(
                "Not Acceptable. Available: " + ", ".join(self.config.media_types),
                status_code=self.config.not_acceptable_status,
            )
            if self.config.add_vary_header:
                response.headers.add_vary_header("Accept")
            await response(scope, receive, send)
            return

        if self.config.media_types and self.config.add_vary_header:
            send = self.vary_on_accept(send)

        await self.app(scope, receive, send)

    def accept_header(self, scope: Scope) -> str:
        accept = Headers(scope=scope).get("accept", "")
        if len(accept) > self.config.max_header_length:
            logger.warning(
                "Ignoring Accept header of %d characters (limit %d)",
                len(accept),
                self.config.max_header_length,
            )
            return ""
        return accept

    @staticmethod
    def vary_on_accept(send: Send) -> Send:
        async def send_with_vary(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.add_vary_header("Accept")
            await send(message)

        return send_with_vary
