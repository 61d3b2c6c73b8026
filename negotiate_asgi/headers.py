"""
HTTP Accept header parsing and media type negotiation utilities.

See also: https://www.rfc-editor.org/rfc/rfc9110#section-12.5.1
"""
import logging
import math
import re
from dataclasses import dataclass, field, replace

logger = logging.getLogger(__name__)

WILDCARD = "*"

# Bits of the specificity score. An exact type outranks an exact subtype,
# which outranks matching parameters.
TYPE_MATCH = 4
SUBTYPE_MATCH = 2
PARAMS_MATCH = 1

# Plain decimal q-factors only; underscores and non-ASCII digits are malformed.
Q_VALUE = re.compile(r"[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?")
SPECIAL_Q_VALUE = re.compile(r"[+-]?(inf|infinity|nan)", re.IGNORECASE)


@dataclass(frozen=True)
class MediaTypeSpec:
    """
    One entry of an Accept header, or one candidate media type.

    `specificity` is only meaningful on the result of `specify`.
    """

    type: str
    subtype: str
    parameters: dict[str, str] = field(default_factory=dict, hash=False)
    quality: float = 1.0
    source_index: int = 0
    specificity: int = 0

    @property
    def full_type(self) -> str:
        return f"{self.type}/{self.subtype}"

    @property
    def rejected(self) -> bool:
        # q=0 means the client explicitly forbids this media type
        return self.quality <= 0


def split_media_types(accept: str) -> list[str]:
    """
    Splits an Accept header into its comma-separated entries.

    Commas inside double quotes (e.g. `text/plain;foo="a,b"`) do not
    separate entries. Whatever follows the last separator is returned as
    the final entry, even when its quotes never balance.
    """
    parts: list[str] = []
    start = 0
    quotes = 0

    for index, char in enumerate(accept):
        if char == '"':
            quotes += 1
        elif char == "," and quotes % 2 == 0:
            parts.append(accept[start:index].strip())
            start = index + 1
            quotes = 0

    tail = accept[start:].strip()
    if tail:
        parts.append(tail)
    return parts


def parse_quality(value: str) -> float | None:
    """
    Parses a q-factor, returning None if it is malformed.

    "nan" parses but can never be acceptable, so it counts as q=0.
    """
    if not (Q_VALUE.fullmatch(value) or SPECIAL_Q_VALUE.fullmatch(value)):
        return None

    q_val = float(value)
    if math.isnan(q_val):
        return 0.0
    return q_val


def parse_media_type(value: str, index: int = 0) -> MediaTypeSpec | None:
    """
    Parses a single media type (e.g., "text/html;level=1;q=0.8").
    Returns None if there is no "/" between type and subtype.
    """
    components = value.split(";")

    type_, slash, subtype = components[0].partition("/")
    if not slash:
        return None

    quality = 1.0  # Default q-factor is 1.0 per RFC
    parameters: dict[str, str] = {}

    for param in components[1:]:
        key, equals, raw_value = param.partition("=")
        if not equals:
            continue

        key = key.strip()
        raw_value = raw_value.strip()

        if key == "q":
            q_val = parse_quality(raw_value)
            if q_val is not None:  # A malformed q-factor leaves the default in place
                quality = q_val
        else:
            parameters[key] = raw_value

    return MediaTypeSpec(
        type=type_.strip(),
        subtype=subtype.strip(),
        parameters=parameters,
        quality=quality,
        source_index=index,
    )


def parse_accept(accept: str) -> list[MediaTypeSpec]:
    """
    Parses the Accept header into media types, keeping their header order.
    Malformed entries are dropped.
    """
    specs: list[MediaTypeSpec] = []

    for index, part in enumerate(split_media_types(accept)):
        spec = parse_media_type(part, index)
        if spec is None:
            logger.debug("Ignoring malformed media type %r in Accept header", part)
            continue
        specs.append(spec)

    return specs


def specify(candidate: str, spec: MediaTypeSpec, index: int) -> MediaTypeSpec | None:
    """
    Checks whether `candidate` is acceptable under `spec`.

    Returns a copy of `spec` carrying the specificity of the match and the
    candidate's `index`, or None if they are not compatible. Parameters
    that only the candidate declares are not considered.
    """
    offered = parse_media_type(candidate)
    if offered is None:
        return None

    score = 0

    if spec.type.lower() == offered.type.lower():
        score |= TYPE_MATCH
    elif spec.type != WILDCARD:
        return None

    if spec.subtype.lower() == offered.subtype.lower():
        score |= SUBTYPE_MATCH
    elif spec.subtype != WILDCARD:
        return None

    offered_params = {key.lower(): val for key, val in offered.parameters.items()}
    for key, val in spec.parameters.items():
        if val != WILDCARD and val.lower() != offered_params.get(key.lower(), "").lower():
            return None
        score |= PARAMS_MATCH

    return replace(spec, source_index=index, specificity=score)


def get_media_type_priority(
    candidate: str, specs: list[MediaTypeSpec], index: int
) -> MediaTypeSpec | None:
    """
    Returns the most specific match for `candidate` among `specs`,
    preferring the higher quality between equally specific matches.
    """
    priority: MediaTypeSpec | None = None

    for spec in specs:
        match = specify(candidate, spec, index)
        if match is None:
            continue
        if (
            priority is None
            or match.specificity > priority.specificity
            or (
                match.specificity == priority.specificity
                and match.quality > priority.quality
            )
        ):
            priority = match

    return priority


def sort_by_preference(specs: list[MediaTypeSpec]) -> list[MediaTypeSpec]:
    # Higher quality first, then more specific, then original order
    return sorted(specs, key=lambda s: (-s.quality, -s.specificity, s.source_index))


def preferred_media_types(accept: str, *candidates: str) -> list[str]:
    """
    Returns the media types the client accepts, most preferred first.

    Without candidates, this is every media type named by the Accept
    header. With candidates (ordered by server preference), it is the
    subset of candidates the client accepts. Entries with q=0 are excluded.

        preferred_media_types("text/html, application/json", "application/json", "text/html")
        # -> ["application/json", "text/html"]

        preferred_media_types("text/html, text/plain, */*", "application/json")
        # -> ["application/json"]
    """
    if not accept:
        accept = "*/*"

    # 1. Parse the header into a list of valid media types
    specs = parse_accept(accept)

    # 2. Without candidates, list what the client asked for
    if not candidates:
        return [spec.full_type for spec in sort_by_preference(specs) if not spec.rejected]

    # 3. Find the best match for every candidate the client accepts at all
    priorities: list[MediaTypeSpec] = []
    for index, candidate in enumerate(candidates):
        priority = get_media_type_priority(candidate, specs, index)
        if priority is not None:
            priorities.append(priority)

    # 4. Order the candidates by how the client weighs their best match
    return [
        candidates[priority.source_index]
        for priority in sort_by_preference(priorities)
        if not priority.rejected
    ]


def preferred_media_type(
    accept: str, *candidates: str, default: str | None = None
) -> str | None:
    """
    Returns the single most preferred media type, or `default` if the
    client accepts none of them.
    """
    types = preferred_media_types(accept, *candidates)
    return types[0] if types else default
