"""
Configuration for the Accept negotiation middleware.
"""
import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class NegotiationConfig:
    # Media types the application can produce, most preferred first.
    # Empty means "report whatever the client asked for".
    media_types: tuple[str, ...] = ()

    # Respond with `not_acceptable_status` when none of `media_types` is acceptable.
    strict: bool = False

    # Regular expressions matched against the request path.
    excluded_handlers: tuple[str, ...] = ()

    # Accept headers longer than this are ignored as if absent.
    max_header_length: int = 4096

    add_vary_header: bool = True
    not_acceptable_status: int = 406

    excluded_patterns: tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Accept lists from callers, store tuples
        object.__setattr__(self, "media_types", tuple(self.media_types))
        object.__setattr__(self, "excluded_handlers", tuple(self.excluded_handlers))

        for media_type in self.media_types:
            if "/" not in media_type.split(";", 1)[0]:
                raise ValueError(f"Invalid media type: {media_type!r}")

        if self.strict and not self.media_types:
            raise ValueError("strict negotiation requires at least one media type")

        if self.max_header_length <= 0:
            raise ValueError("max_header_length must be positive")

        if not 400 <= self.not_acceptable_status <= 499:
            raise ValueError(
                f"not_acceptable_status must be a 4xx code, got {self.not_acceptable_status}"
            )

        try:
            patterns = tuple(re.compile(path) for path in self.excluded_handlers)
        except re.error as exc:
            raise ValueError(f"Invalid excluded handler pattern: {exc}") from exc
        object.__setattr__(self, "excluded_patterns", patterns)

    def is_excluded(self, path: str) -> bool:
        return any(pattern.search(path) for pattern in self.excluded_patterns)
