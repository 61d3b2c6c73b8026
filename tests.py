"""Main tests for Accept header negotiation and its middleware.

The header parsing cases follow the examples of RFC 9110, section 12.5.1.
"""

import functools
import logging

import pytest

from starlette.applications import Starlette
from starlette.responses import (
    JSONResponse,
    PlainTextResponse,
    Response,
)
from starlette.routing import Route
from starlette.testclient import TestClient

from negotiate_asgi import (
    AcceptMiddleware,
    MediaTypeSpec,
    NegotiationConfig,
    accepted_media_types,
    best_media_type,
    parse_accept,
    parse_media_type,
    preferred_media_type,
    preferred_media_types,
    split_media_types,
)
from negotiate_asgi.headers import get_media_type_priority, specify


@pytest.fixture
def test_client_factory(anyio_backend_name, anyio_backend_options):
    return functools.partial(
        TestClient,
        backend=anyio_backend_name,
        backend_options=anyio_backend_options,
    )


def negotiated_state(request):
    return JSONResponse(
        {
            "media_type": request.state.media_type,
            "accepted": request.state.accepted_media_types,
        }
    )


@pytest.mark.parametrize(
    "accept, candidates, expected",
    [
        # 1. An empty header accepts anything
        ("", ["application/json"], ["application/json"]),
        ("", [], ["*/*"]),

        # 2. Candidates follow client order when qualities are equal
        (
            "text/html, application/json",
            ["application/json", "text/html"],
            ["application/json", "text/html"],
        ),
        (
            "text/html;q=0.2, application/json;q=0.8",
            ["application/json", "text/html"],
            ["application/json", "text/html"],
        ),

        # 3. q=0 excludes a type even though the header names it
        ("application/json;q=0", ["application/json"], []),
        ("application/json;q=0, */*", ["application/json", "text/html"], ["text/html"]),

        # 4. Without candidates, the header itself is sorted
        ("*/*", [], ["*/*"]),
        (
            "text/html, application/*;q=0.2, image/jpeg;q=0.8",
            [],
            ["text/html", "image/jpeg", "application/*"],
        ),
        ("text/html;q=0, text/plain", [], ["text/plain"]),

        # 5. Exact matches win over wildcards; unmatched candidates are dropped
        (
            "text/html, application/*;q=0.2, image/jpeg;q=0.8",
            ["text/html", "text/plain", "application/json"],
            ["text/html", "application/json"],
        ),

        # 6. Bare wildcard matches anything
        ("*/*", ["application/json"], ["application/json"]),
        ("*/*", ["text/plain"], ["text/plain"]),
        ("text/html, */*", ["application/xml"], ["application/xml"]),

        # 7. Long header with a trailing wildcard
        (
            "text/plain, application/json;q=0.5, text/html, text/xml, text/yaml, "
            "text/javascript, text/csv, text/css, text/rtf, text/markdown, "
            "application/octet-stream;q=0.2, */*;q=0.1",
            ["text/plain"],
            ["text/plain"],
        ),

        # 8. A more specific match is ranked above a wildcard of equal quality
        ("*/*, text/html", ["application/json", "text/html"], ["text/html", "application/json"]),

        # 9. Specificity picks the match, quality orders the result
        ("text/*;q=0.5, text/html;q=0.1", ["text/html", "text/plain"], ["text/plain", "text/html"]),
    ],
)
def test_preferred_media_types(accept, candidates, expected):
    assert preferred_media_types(accept, *candidates) == expected


@pytest.mark.parametrize(
    "accept, candidates, expected",
    [
        ("TEXT/HTML", ["text/html"], ["text/html"]),
        ("text/html", ["Text/HTML"], ["Text/HTML"]),
        # Parameters of the header entry must all match
        (
            "text/plain;charset=utf-8",
            ["text/plain;charset=UTF-8", "text/plain"],
            ["text/plain;charset=UTF-8"],
        ),
        ("text/plain;Charset=UTF-8", ["text/plain;charset=utf-8"], ["text/plain;charset=utf-8"]),
        ("text/plain;charset=*", ["text/plain;charset=latin-1"], ["text/plain;charset=latin-1"]),
        # Parameters only the candidate declares are ignored
        ("text/plain", ["text/plain;charset=utf-8"], ["text/plain;charset=utf-8"]),
    ],
)
def test_case_and_parameters(accept, candidates, expected):
    assert preferred_media_types(accept, *candidates) == expected


@pytest.mark.parametrize(
    "accept, candidates, expected",
    [
        # Malformed entries are skipped, never fatal
        ("text, application/json", [], ["application/json"]),
        ("garbage", [], []),
        ("garbage", ["application/json"], []),
        (",,,", [], []),
        ("text/html", ["nonsense"], []),
        # Unparseable q-factors keep the default of 1.0
        ("application/json;q=0.5, text/html;q=abc", [], ["text/html", "application/json"]),
        ("application/json, text/html;q=1_0", [], ["application/json", "text/html"]),
        ("application/json, text/html;q=\u0661", [], ["application/json", "text/html"]),
        ("application/json, text/html;q=0x1p-2", [], ["application/json", "text/html"]),
        ("application/json, text/html;q=+-inf", [], ["application/json", "text/html"]),
        # A NaN q-factor can never be acceptable
        ("application/json;q=0.5, text/html;q=nan", [], ["application/json"]),
        ("a/b;q=0.5, c/d;q=NaN, e/f;q=0.7", [], ["e/f", "a/b"]),
        ("application/json;q=0.5, text/html;q=nan", ["text/html", "application/json"], ["application/json"]),
        # Out-of-range q-factors are kept as given
        ("application/json, text/html;q=2", [], ["text/html", "application/json"]),
        ("application/json, text/html;q=inf", [], ["text/html", "application/json"]),
        ("text/html;q=-1", [], []),
    ],
)
def test_malformed_input(accept, candidates, expected):
    assert preferred_media_types(accept, *candidates) == expected


def test_equal_preference_keeps_input_order():
    accept = "text/csv;q=0.5, text/html;q=0.5, text/plain;q=0.5"
    assert preferred_media_types(accept) == ["text/csv", "text/html", "text/plain"]

    candidates = ["image/png", "application/json", "text/html", "font/woff"]
    assert preferred_media_types("*/*", *candidates) == candidates


def test_negotiation_is_idempotent():
    accept = "text/html, application/*;q=0.2, image/jpeg;q=0.8"
    candidates = ["text/html", "text/plain", "application/json"]

    first = preferred_media_types(accept, *candidates)
    second = preferred_media_types(accept, *candidates)

    assert first == second
    assert candidates == ["text/html", "text/plain", "application/json"]


def test_preferred_media_type():
    assert preferred_media_type("text/html, application/json;q=0.5", "application/json", "text/html") == "text/html"
    assert preferred_media_type("image/png", "application/json") is None
    assert preferred_media_type("image/png", "application/json", default="text/plain") == "text/plain"


@pytest.mark.parametrize(
    "accept, expected",
    [
        ("", []),
        ("text/html", ["text/html"]),
        (" text/html ,application/json ", ["text/html", "application/json"]),
        ("text/html,", ["text/html"]),
        ('text/plain;foo="a,b", application/json', ['text/plain;foo="a,b"', "application/json"]),
        ('a/b;x="1,2";y="3,4",c/d', ['a/b;x="1,2";y="3,4"', "c/d"]),
        # An unterminated quote swallows the rest of the header
        ('text/plain;foo="a,b, application/json', ['text/plain;foo="a,b, application/json']),
    ],
)
def test_split_media_types(accept, expected):
    assert split_media_types(accept) == expected


def test_unterminated_quote_keeps_leading_entry():
    assert preferred_media_types('text/plain;foo="a,b, application/json') == ["text/plain"]


def test_parse_media_type():
    assert parse_media_type("") is None
    assert parse_media_type("text") is None

    spec = parse_media_type("text/html")
    assert spec.type == "text"
    assert spec.subtype == "html"
    assert spec.quality == 1.0
    assert spec.parameters == {}

    spec = parse_media_type("text/html;q=0.8", 3)
    assert spec.full_type == "text/html"
    assert spec.quality == 0.8
    assert spec.source_index == 3
    assert spec.parameters == {}

    spec = parse_media_type("text/html;foo=bar")
    assert spec.quality == 1.0
    assert spec.parameters == {"foo": "bar"}

    spec = parse_media_type(" text / html ; level = 1 ; q = 0.5 ; flag")
    assert (spec.type, spec.subtype) == ("text", "html")
    assert spec.parameters == {"level": "1"}
    assert spec.quality == 0.5

    # Only a lowercase "q" is the q-factor
    spec = parse_media_type("text/html;Q=0.5")
    assert spec.quality == 1.0
    assert spec.parameters == {"Q": "0.5"}


def test_parse_accept_keeps_header_positions():
    specs = parse_accept("text/html, bogus, application/json;q=0")
    assert [spec.full_type for spec in specs] == ["text/html", "application/json"]
    assert [spec.source_index for spec in specs] == [0, 2]
    assert specs[1].rejected


def test_parse_accept_logs_dropped_entries(caplog):
    with caplog.at_level(logging.DEBUG, logger="negotiate_asgi.headers"):
        parse_accept("text/html, bogus")
    assert "bogus" in caplog.text


def test_media_types_are_hashable():
    first = parse_media_type("text/html;level=1;q=0.5")
    second = parse_media_type("text/html;level=1;q=0.5")
    assert hash(first) == hash(second)
    assert {first, second} == {first}
    assert parse_media_type("text/html;q=0.5") != first


@pytest.mark.parametrize(
    "candidate, accept_entry, expected",
    [
        ("text/html", "text/html", 6),
        ("text/html", "text/*", 4),
        ("text/html", "*/html", 2),
        ("text/html", "*/*", 0),
        ("text/html;level=1", "text/html;level=1", 7),
        ("text/html", "text/*;level=*", 5),
        ("image/png", "text/*", None),
        ("text/html", "text/plain", None),
        ("text/html;level=2", "text/html;level=1", None),
        ("text/html", "text/html;level=1", None),
        ("nonsense", "*/*", None),
    ],
)
def test_specify(candidate, accept_entry, expected):
    spec = parse_media_type(accept_entry, 5)
    match = specify(candidate, spec, 2)

    if expected is None:
        assert match is None
        return

    assert match.specificity == expected
    assert match.source_index == 2
    assert match.full_type == spec.full_type
    assert match.quality == spec.quality
    # The accepted entry itself is left untouched
    assert spec.source_index == 5
    assert spec.specificity == 0


def test_get_media_type_priority():
    specs = [
        MediaTypeSpec("text", "html", quality=1.0),
        MediaTypeSpec("text", "*", quality=0.8),
        MediaTypeSpec("*", "*", quality=0.1),
    ]

    priority = get_media_type_priority("text/html", specs, 0)
    assert priority.full_type == "text/html"
    assert priority.quality == 1.0

    priority = get_media_type_priority("text/plain", specs, 1)
    assert priority.full_type == "text/*"
    assert priority.source_index == 1

    priority = get_media_type_priority("image/png", specs, 2)
    assert priority.full_type == "*/*"

    assert get_media_type_priority("image/png", specs[:2], 0) is None


def test_get_media_type_priority_prefers_quality_on_ties():
    specs = parse_accept("text/html;q=0.3, text/html;q=0.9, text/html;q=0.9;x=*")
    priority = get_media_type_priority("text/html", specs, 0)
    # The entry with a parameter is more specific than either of the others
    assert priority.specificity == 7

    specs = parse_accept("text/html;q=0.3, text/html;q=0.9")
    priority = get_media_type_priority("text/html", specs, 0)
    assert priority.quality == 0.9


def test_config_defaults():
    config = NegotiationConfig()
    assert config.media_types == ()
    assert config.strict is False
    assert config.max_header_length == 4096
    assert config.not_acceptable_status == 406
    assert not config.is_excluded("/anything")


def test_config_normalises_sequences():
    config = NegotiationConfig(
        media_types=["application/json"], excluded_handlers=["^/static", "/health$"]
    )
    assert config.media_types == ("application/json",)
    assert config.is_excluded("/static/app.css")
    assert config.is_excluded("/api/health")
    assert not config.is_excluded("/api/items")


@pytest.mark.parametrize(
    "options",
    [
        {"strict": True},
        {"media_types": ["json"]},
        {"media_types": ["application/json", "text;q=1/2"]},
        {"max_header_length": 0},
        {"not_acceptable_status": 500},
        {"excluded_handlers": ["("]},
    ],
)
def test_config_rejects_invalid_options(options):
    with pytest.raises(ValueError):
        NegotiationConfig(**options)


def test_middleware_rejects_config_and_options():
    config = NegotiationConfig(media_types=["application/json"])
    with pytest.raises(TypeError):
        AcceptMiddleware(negotiated_state, config=config, strict=True)


def test_negotiated_media_type(test_client_factory):
    app = Starlette(routes=[Route("/", negotiated_state)])
    app.add_middleware(AcceptMiddleware, media_types=["application/json", "text/html"])

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/html, application/json;q=0.9"})
    assert response.status_code == 200
    assert response.json() == {
        "media_type": "text/html",
        "accepted": ["text/html", "application/json"],
    }
    assert response.headers["Vary"] == "Accept"


def test_negotiated_media_type_from_config(test_client_factory):
    app = Starlette(routes=[Route("/", negotiated_state)])
    app.add_middleware(
        AcceptMiddleware,
        config=NegotiationConfig(media_types=("application/json", "text/html")),
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "*/*"})
    assert response.json() == {
        "media_type": "application/json",
        "accepted": ["application/json", "text/html"],
    }


def test_no_acceptable_media_type(test_client_factory):
    app = Starlette(routes=[Route("/", negotiated_state)])
    app.add_middleware(AcceptMiddleware, media_types=["application/json"])

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "image/png"})
    assert response.status_code == 200
    assert response.json() == {"media_type": None, "accepted": []}


def test_strict_not_acceptable(test_client_factory):
    calls = []

    def homepage(request):
        calls.append(request)
        return PlainTextResponse("OK")

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(
        AcceptMiddleware, media_types=["application/json", "text/html"], strict=True
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "image/png, application/json;q=0"})
    assert response.status_code == 406
    assert response.text == "Not Acceptable. Available: application/json, text/html"
    assert response.headers["Vary"] == "Accept"
    assert calls == []

    response = client.get("/", headers={"accept": "text/*"})
    assert response.status_code == 200
    assert len(calls) == 1


def test_strict_custom_status(test_client_factory):
    app = Starlette(routes=[Route("/", negotiated_state)])
    app.add_middleware(
        AcceptMiddleware,
        media_types=["application/json"],
        strict=True,
        not_acceptable_status=400,
        add_vary_header=False,
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/html"})
    assert response.status_code == 400
    assert "Vary" not in response.headers


def test_vary_header_is_merged(test_client_factory):
    def homepage(request):
        return Response("OK", headers={"vary": "Accept-Encoding"})

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(AcceptMiddleware, media_types=["text/plain"])

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/plain"})
    assert response.headers["Vary"] == "Accept-Encoding, Accept"


def test_without_media_types_reports_header(test_client_factory):
    app = Starlette(routes=[Route("/", negotiated_state)])
    app.add_middleware(AcceptMiddleware)

    client = test_client_factory(app)
    response = client.get(
        "/", headers={"accept": "text/html, application/*;q=0.2, image/jpeg;q=0.8"}
    )
    assert response.json() == {
        "media_type": "text/html",
        "accepted": ["text/html", "image/jpeg", "application/*"],
    }
    assert "Vary" not in response.headers


def test_excluded_handlers(test_client_factory):
    def homepage(request):
        return JSONResponse({"negotiated": "media_type" in request.scope.get("state", {})})

    app = Starlette(routes=[Route("/excluded", homepage), Route("/", homepage)])
    app.add_middleware(
        AcceptMiddleware,
        media_types=["application/json"],
        strict=True,
        excluded_handlers=["^/excluded"],
    )

    client = test_client_factory(app)
    response = client.get("/excluded", headers={"accept": "image/png"})
    assert response.status_code == 200
    assert response.json() == {"negotiated": False}
    assert "Vary" not in response.headers

    response = client.get("/", headers={"accept": "application/json"})
    assert response.json() == {"negotiated": True}


def test_oversized_accept_header_is_ignored(test_client_factory, caplog):
    app = Starlette(routes=[Route("/", negotiated_state)])
    app.add_middleware(
        AcceptMiddleware,
        media_types=["application/json", "text/html"],
        max_header_length=32,
    )

    client = test_client_factory(app)
    accept = "text/html, " + ", ".join(["image/png;q=0.1"] * 10)
    with caplog.at_level(logging.WARNING, logger="negotiate_asgi.middleware"):
        response = client.get("/", headers={"accept": accept})

    assert response.json() == {
        "media_type": "application/json",
        "accepted": ["application/json", "text/html"],
    }
    assert "Ignoring Accept header" in caplog.text


def test_request_helpers(test_client_factory):
    def best(request):
        media_type = best_media_type(
            request, "application/json", "text/html", default="text/plain"
        )
        return PlainTextResponse(media_type)

    def accepted(request):
        return JSONResponse(accepted_media_types(request, "application/json", "text/html"))

    app = Starlette(routes=[Route("/best", best), Route("/accepted", accepted)])

    client = test_client_factory(app)
    assert client.get("/best", headers={"accept": "text/html"}).text == "text/html"
    assert client.get("/best", headers={"accept": "image/png"}).text == "text/plain"
    assert client.get(
        "/accepted", headers={"accept": "text/html;q=0.5, application/*"}
    ).json() == ["application/json", "text/html"]
