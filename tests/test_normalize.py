from __future__ import annotations

import pytest

from endpoint_usage.normalize import EndpointKey, normalize_endpoint, normalize_path

UUID = "550e8400-e29b-41d4-a716-446655440000"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("/users/42", "/users/:id"),
        ("/posts/9/comments/7", "/posts/:id/comments/:id"),
        (f"/files/{UUID}", "/files/:uuid"),
        (f"/files/{UUID}/versions/3", "/files/:uuid/versions/:id"),
        ("/users/42?expand=true", "/users/:id"),
        ("/v2/items", "/v2/items"),
        ("/orders/2fa", "/orders/2fa"),
        ("/", "/"),
        ("", ""),
    ],
)
def test_normalize_path_collapses_ids_and_uuids(raw: str, expected: str) -> None:
    assert normalize_path(raw) == expected


def test_query_string_kept_when_enabled() -> None:
    assert (
        normalize_path("/users/42?page=2", include_query_params=True)
        == "/users/:id?page=2"
    )


@pytest.mark.parametrize(
    "raw",
    [
        "/users/42",
        "/posts/9/comments/7",
        f"/files/{UUID}",
        "/a/1/2/3",
        "/users/:id",
        "/search?q=/5",
        "weird path//11//",
    ],
)
def test_normalization_is_idempotent(raw: str) -> None:
    for include_query in (False, True):
        once = normalize_endpoint("get", raw, include_query_params=include_query)
        twice = normalize_endpoint(
            once.method, once.path, include_query_params=include_query
        )
        assert twice == once


def test_method_is_uppercased() -> None:
    assert normalize_endpoint("delete", "/users/5/avatar") == EndpointKey(
        "DELETE", "/users/:id/avatar"
    )


def test_malformed_input_degrades_without_raising() -> None:
    key = normalize_endpoint(None, None)  # type: ignore[arg-type]
    assert key == EndpointKey("", "")


def test_endpoint_key_round_trips_paths_with_colons() -> None:
    key = EndpointKey("GET", "/users/:id/posts/:id")
    assert str(key) == "GET:/users/:id/posts/:id"
    assert EndpointKey.parse(str(key)) == key
    assert EndpointKey.parse("no-separator") is None
