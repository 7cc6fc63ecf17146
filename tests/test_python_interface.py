from __future__ import annotations

from typing import Any

import httpx
import pytest

from tale_graph.api.python_interface import AuthSession, TaleApiClient

BASE_URL = "http://127.0.0.1:8000"


def _tale_payload(tale_id: str) -> dict[str, Any]:
    return {
        "tale_id": tale_id,
        "title": "Opening",
        "author_name": "Alice",
        "content": "Once upon a time.",
        "author_id": "alice",
        "created_at_utc": "2024-01-01T00:00:00.000000+00:00",
        "vote_count": 0,
        "viewer_has_voted": False,
        "series_votes": 0,
        "last_activity_at_utc": None,
        "choices": [],
    }


def test_session_carries_bearer_header() -> None:
    client = TaleApiClient(api_base_url=f"{BASE_URL}/")
    session = client.session("token-123")
    assert session == AuthSession(access_token="token-123", api_base_url=BASE_URL)
    assert session.headers == {"Authorization": "Bearer token-123"}


def test_create_and_vote_requests(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, Any]] = []

    def fake_post(
        url: str,
        json: object = None,
        headers: dict[str, str] | None = None,
        timeout: float = 0.0,
    ) -> httpx.Response:
        calls.append({"url": url, "json": json, "headers": headers})
        request = httpx.Request("POST", url)
        if url.endswith("/api/v1/tales"):
            return httpx.Response(status_code=201, request=request, json={"tale_id": "t-1"})
        if url.endswith("/t-1/vote"):
            return httpx.Response(
                status_code=200, request=request, json={"tale_id": "t-1", "voted": True}
            )
        return httpx.Response(
            status_code=409, request=request, json={"detail": "Already voted for this tale."}
        )

    monkeypatch.setattr("tale_graph.api.python_interface.httpx.post", fake_post)
    client = TaleApiClient(api_base_url=BASE_URL)
    session = client.session("token-123")

    assert client.create_tale(session=session, content="Body", parent_tale_id="root") == "t-1"
    assert client.vote(session=session, tale_id="t-1") is True
    assert client.vote(session=session, tale_id="t-2") is False
    assert calls[0]["json"] == {"title": None, "content": "Body", "parent_tale_id": "root"}
    assert calls[0]["headers"] == {"Authorization": "Bearer token-123"}


def test_read_methods_parse_responses(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[tuple[str, object]] = []

    def fake_get(
        url: str,
        params: dict[str, object] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 0.0,
    ) -> httpx.Response:
        seen.append((url, params))
        request = httpx.Request("GET", url)
        if url.endswith("/roots"):
            payload: object = {
                "items": [_tale_payload("r-1")],
                "total_count": 1,
                "page": 1,
                "page_size": 10,
            }
        elif url.endswith("/choices"):
            payload = {
                "items": [
                    {"tale_id": "c-1", "title": "Left", "votes": 3, "preview_text": "They..."}
                ],
                "total_count": 1,
                "page": 1,
                "page_size": 10,
            }
        elif url.endswith("/map"):
            payload = {
                "nodes": [{"node_id": "r-1", "label": "Opening", "node_type": "ROOT"}],
                "edges": [],
            }
        elif url.endswith("/search"):
            payload = [_tale_payload("r-1")]
        else:
            payload = _tale_payload("r-1")
        return httpx.Response(status_code=200, request=request, json=payload)

    monkeypatch.setattr("tale_graph.api.python_interface.httpx.get", fake_get)
    client = TaleApiClient(api_base_url=BASE_URL)

    assert client.get_tale(tale_id="r-1").title == "Opening"
    assert client.list_roots(sort_by="newest").items[0].tale_id == "r-1"
    assert client.list_choices(tale_id="r-1").items[0].votes == 3
    assert client.story_map(tale_id="r-1").nodes[0].node_type == "ROOT"
    assert [tale.tale_id for tale in client.search(query="upon")] == ["r-1"]
    assert (f"{BASE_URL}/api/v1/tales/roots", {"page": 1, "size": 10, "sort_by": "newest"}) in seen


def test_update_and_delete_requests(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: dict[str, object] = {}

    def fake_put(
        url: str,
        json: object = None,
        headers: dict[str, str] | None = None,
        timeout: float = 0.0,
    ) -> httpx.Response:
        sent["json"] = json
        return httpx.Response(
            status_code=200, request=httpx.Request("PUT", url), json=_tale_payload("r-1")
        )

    def fake_delete(
        url: str, headers: dict[str, str] | None = None, timeout: float = 0.0
    ) -> httpx.Response:
        status_code = 204 if url.endswith("/mine") else 404
        return httpx.Response(status_code=status_code, request=httpx.Request("DELETE", url))

    monkeypatch.setattr("tale_graph.api.python_interface.httpx.put", fake_put)
    monkeypatch.setattr("tale_graph.api.python_interface.httpx.delete", fake_delete)
    client = TaleApiClient(api_base_url=BASE_URL)
    session = client.session("token-123")

    client.update_tale(session=session, tale_id="r-1", title="Renamed")
    assert sent["json"] == {"title": "Renamed"}
    assert client.delete_tale(session=session, tale_id="mine") is True
    assert client.delete_tale(session=session, tale_id="theirs") is False


def test_server_errors_are_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_get(url: str, **_: object) -> httpx.Response:
        return httpx.Response(status_code=500, request=httpx.Request("GET", url))

    monkeypatch.setattr("tale_graph.api.python_interface.httpx.get", fake_get)
    with pytest.raises(httpx.HTTPStatusError):
        TaleApiClient(api_base_url=BASE_URL).get_tale(tale_id="r-1")
