"""
Negotiation helpers for endpoints that pick their own representation.
"""
from starlette.requests import HTTPConnection

from negotiate_asgi.headers import preferred_media_type, preferred_media_types


def accepted_media_types(connection: HTTPConnection, *candidates: str) -> list[str]:
    """
    Returns the candidates the client accepts, most preferred first, or
    every media type of the Accept header if no candidates are given.
    """
    return preferred_media_types(connection.headers.get("accept", ""), *candidates)


def best_media_type(
    connection: HTTPConnection, *candidates: str, default: str | None = None
) -> str | None:
    return preferred_media_type(
        connection.headers.get("accept", ""), *candidates, default=default
    )
