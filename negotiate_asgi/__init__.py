from negotiate_asgi.config import NegotiationConfig
from negotiate_asgi.headers import (
    MediaTypeSpec,
    parse_accept,
    parse_media_type,
    preferred_media_type,
    preferred_media_types,
    split_media_types,
)
from negotiate_asgi.middleware import AcceptMiddleware
from negotiate_asgi.requests import accepted_media_types, best_media_type

__all__ = [
    "AcceptMiddleware",
    "MediaTypeSpec",
    "NegotiationConfig",
    "accepted_media_types",
    "best_media_type",
    "parse_accept",
    "parse_media_type",
    "preferred_media_type",
    "preferred_media_types",
    "split_media_types",
]
