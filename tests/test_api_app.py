from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from tale_graph.adapters.sqlite_anomaly_store import SQLiteAnomalyStore
from tale_graph.adapters.sqlite_topology_store import SQLiteTopologyStore
from tale_graph.api.app import create_app
from tale_graph.core.deletion_policy import HAS_BRANCHES_MESSAGE
from tale_graph.core.tale_service import TaleService

JWT_SECRET = "test-secret-with-enough-length-for-hs256"
JOB_SECRET = "trending-job-secret"


@pytest.fixture(autouse=True)
def _auth_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "TALE_GRAPH_JWT_ALGORITHMS",
        "TALE_GRAPH_JWT_ISSUER",
        "TALE_GRAPH_JWT_AUDIENCE",
        "TALE_GRAPH_JWT_JWKS_URL",
        "TALE_GRAPH_JWT_JWKS_JSON",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TALE_GRAPH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("TALE_GRAPH_JOB_SECRET", JOB_SECRET)


def _client(tmp_path: Path, **kwargs: Any) -> TestClient:
    app = create_app(
        content_db_path=tmp_path / "content.db",
        topology_db_path=tmp_path / "topology.db",
    )
    return TestClient(app, **kwargs)


def _headers(user_id: str, full_name: str) -> dict[str, str]:
    token = jwt.encode(
        {
            "sub": user_id,
            "email": f"{user_id}@example.com",
            "user_metadata": {"full_name": full_name},
        },
        JWT_SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


def _oidc_token_and_jwks(*, issuer: str, audience: str, subject: str) -> tuple[str, dict[str, Any]]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(key.public_key()))
    jwk["kid"] = "test-kid"
    token = jwt.encode(
        {
            "iss": issuer,
            "aud": audience,
            "sub": subject,
            "user_metadata": json.dumps({"full_name": "Oidc Writer"}),
        },
        key,
        algorithm="RS256",
        headers={"kid": "test-kid"},
    )
    return token, {"keys": [jwk]}


def _create(
    client: TestClient,
    headers: dict[str, str],
    content: str,
    *,
    title: str | None = None,
    parent: str | None = None,
) -> str:
    response = client.post(
        "/api/v1/tales",
        json={"title": title, "content": content, "parent_tale_id": parent},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return str(response.json()["tale_id"])


def test_health_and_root_endpoints(tmp_path: Path) -> None:
    client = _client(tmp_path)
    health = client.get("/healthz").json()
    assert health["status"] == "Alive"
    assert health["service"] == "tale_graph"
    assert health["content"] is True
    assert health["topology"] is True
    assert health["timestamp_utc"].endswith("+00:00")
    root = client.get("/api/v1").json()
    assert root["auth"] == "bearer-jwt"
    assert "/api/v1/tales/{tale_id}/map" in root["endpoints"]
    assert client.get("/openapi.json").status_code == 200


def test_health_reports_degraded_when_topology_store_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    client = _client(tmp_path)

    def broken_ping(self: SQLiteTopologyStore) -> None:
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(SQLiteTopologyStore, "ping", broken_ping)
    response = client.get("/healthz")
    assert response.status_code == 200
    health = response.json()
    assert health["status"] == "Degraded"
    assert health["content"] is True
    assert health["topology"] is False


def test_feedback_is_stored_without_authentication(tmp_path: Path) -> None:
    client = _client(tmp_path)
    response = client.post(
        "/api/v1/feedback",
        json={"email": "reader@example.com", "message": "  Login keeps failing.  "},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Thank you for your feedback!"

    anonymous = client.post("/api/v1/feedback", json={"message": "Love the maps."})
    assert anonymous.status_code == 201

    with sqlite3.connect(tmp_path / "content.db") as connection:
        rows = connection.execute(
            "SELECT feedback_id, user_email, message FROM feedback ORDER BY rowid"
        ).fetchall()
    assert rows == [
        (body["feedback_id"], "reader@example.com", "Login keeps failing."),
        (anonymous.json()["feedback_id"], None, "Love the maps."),
    ]


def test_feedback_rejects_blank_messages_bad_emails_and_unknown_fields(tmp_path: Path) -> None:
    client = _client(tmp_path)
    assert client.post("/api/v1/feedback", json={"message": "   "}).status_code == 422
    assert client.post("/api/v1/feedback", json={}).status_code == 422
    bad_email = {"email": "not-an-email", "message": "Hi"}
    assert client.post("/api/v1/feedback", json=bad_email).status_code == 422
    extra = {"message": "Hi", "rating": 5}
    assert client.post("/api/v1/feedback", json=extra).status_code == 422


def test_api_startup_prunes_anomaly_store(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: dict[str, int] = {}

    def fake_prune(self: SQLiteAnomalyStore, *, retention_days: int, max_rows: int) -> int:
        calls["retention_days"] = retention_days
        calls["max_rows"] = max_rows
        return 0

    monkeypatch.setenv("TALE_GRAPH_ANOMALY_RETENTION_DAYS", "45")
    monkeypatch.setenv("TALE_GRAPH_ANOMALY_MAX_ROWS", "2500")
    monkeypatch.setattr(SQLiteAnomalyStore, "prune_anomalies", fake_prune)
    with _client(tmp_path) as client:
        assert client.get("/healthz").status_code == 200
    assert calls == {"retention_days": 45, "max_rows": 2500}


def test_tale_lifecycle_with_votes_and_choices(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    bob = _headers("bob", "Bob")
    carol = _headers("carol", "Carol")

    root = _create(client, alice, "Once upon a time.", title="Opening")
    left = _create(client, bob, "They went left.", title="Left", parent=root)
    right = _create(client, carol, "They went right.", title="Right", parent=root)

    assert client.post(f"/api/v1/tales/{left}/vote", headers=alice).json() == {
        "tale_id": left,
        "voted": True,
    }
    client.post(f"/api/v1/tales/{left}/vote", headers=carol)
    client.post(f"/api/v1/tales/{right}/vote", headers=alice)
    again = client.post(f"/api/v1/tales/{left}/vote", headers=alice)
    assert again.status_code == 409
    assert again.json()["detail"] == "Already voted for this tale."

    tale = client.get(f"/api/v1/tales/{root}", headers=alice).json()
    assert tale["author_name"] == "Alice"
    assert tale["series_votes"] == 3
    assert tale["viewer_has_voted"] is False
    assert [(item["tale_id"], item["votes"]) for item in tale["choices"]] == [
        (left, 2),
        (right, 1),
    ]
    viewed = client.get(f"/api/v1/tales/{left}", headers=carol).json()
    assert (viewed["vote_count"], viewed["viewer_has_voted"]) == (2, True)

    choices = client.get(f"/api/v1/tales/{root}/choices", params={"page": 2, "size": 1}).json()
    assert choices["total_count"] == 2
    assert [item["tale_id"] for item in choices["items"]] == [right]

    story_map = client.get(f"/api/v1/tales/{right}/map").json()
    assert {node["node_id"] for node in story_map["nodes"]} == {root, left, right}
    assert {node["node_type"] for node in story_map["nodes"]} == {"ROOT", "BRANCH"}
    assert len(story_map["edges"]) == 2


def test_missing_parent_and_missing_tale_are_not_found(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    missing_parent = client.post(
        "/api/v1/tales",
        json={"content": "orphan", "parent_tale_id": "nope"},
        headers=alice,
    )
    assert missing_parent.status_code == 404
    assert client.get("/api/v1/tales/nope").status_code == 404
    assert client.post("/api/v1/tales/nope/vote", headers=alice).status_code == 404
    assert client.get("/api/v1/tales/nope/map").json() == {"nodes": [], "edges": []}


def test_tale_payload_validation(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    assert client.post("/api/v1/tales", json={"content": ""}, headers=alice).status_code == 422
    assert (
        client.post("/api/v1/tales", json={"content": "x", "extra": 1}, headers=alice).status_code
        == 422
    )
    tale_id = _create(client, alice, "text")
    assert client.put(f"/api/v1/tales/{tale_id}", json={}, headers=alice).status_code == 422


def test_roots_listing_and_search(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    bob = _headers("bob", "Bob")
    quiet = _create(client, alice, "A quiet lighthouse story.")
    loud = _create(client, alice, "A loud harbour story.")
    client.post(f"/api/v1/tales/{loud}/vote", headers=bob)

    popular = client.get("/api/v1/tales/roots", params={"sort_by": "popular"}).json()
    assert [item["tale_id"] for item in popular["items"]] == [loud, quiet]
    assert popular["total_count"] == 2
    newest = client.get("/api/v1/tales/roots", params={"sort_by": "newest", "size": 1}).json()
    assert [item["tale_id"] for item in newest["items"]] == [loud]
    assert newest["page_size"] == 1

    found = client.get("/api/v1/tales/search", params={"query": "LIGHTHOUSE"}).json()
    assert [item["tale_id"] for item in found] == [quiet]
    assert client.get("/api/v1/tales/search", params={"query": " "}).json() == []


def test_update_and_delete_rules(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    bob = _headers("bob", "Bob")
    root = _create(client, alice, "Root body", title="Root")
    branch = _create(client, bob, "Branch body", parent=root)
    leaf = _create(client, alice, "Leaf body", parent=branch)

    foreign = client.put(f"/api/v1/tales/{root}", json={"title": "Mine"}, headers=bob)
    assert foreign.status_code == 403
    edited = client.put(f"/api/v1/tales/{root}", json={"content": "New body"}, headers=alice)
    assert (edited.json()["title"], edited.json()["content"]) == ("Root", "New body")

    strict = client.delete(f"/api/v1/users/me/tales/{branch}", headers=bob)
    assert strict.status_code == 400
    assert strict.json()["detail"] == HAS_BRANCHES_MESSAGE
    assert client.get(f"/api/v1/tales/{branch}").json()["content"] == "Branch body"

    assert client.delete(f"/api/v1/tales/{branch}", headers=alice).status_code == 404
    assert client.delete(f"/api/v1/tales/{branch}", headers=bob).status_code == 204
    tombstone = client.get(f"/api/v1/tales/{branch}").json()
    assert tombstone["author_name"] == "Anonymous"
    choices = client.get(f"/api/v1/tales/{branch}/choices").json()
    assert [item["tale_id"] for item in choices["items"]] == [leaf]

    assert client.delete(f"/api/v1/users/me/tales/{leaf}", headers=alice).status_code == 204
    story_map = client.get(f"/api/v1/tales/{root}/map").json()
    assert leaf not in {node["node_id"] for node in story_map["nodes"]}


def test_authentication_is_required_and_checked(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    tale_id = _create(client, alice, "text")

    missing = client.post("/api/v1/tales", json={"content": "x"})
    assert missing.status_code == 401
    assert missing.json()["detail"] == "Missing bearer token"
    bad = {"Authorization": "Bearer not-a-token"}
    assert client.get(f"/api/v1/tales/{tale_id}", headers=bad).status_code == 401
    forged = jwt.encode(
        {"sub": "mallory"}, "another-secret-that-is-long-enough!!", algorithm="HS256"
    )
    forged_headers = {"Authorization": f"Bearer {forged}"}
    assert client.get("/api/v1/users/me", headers=forged_headers).status_code == 401
    no_subject = jwt.encode({"email": "x@example.com"}, JWT_SECRET, algorithm="HS256")
    no_subject_headers = {"Authorization": f"Bearer {no_subject}"}
    assert client.get("/api/v1/users/me", headers=no_subject_headers).status_code == 401


def test_profile_endpoints(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    bob = _headers("bob", "Bob")
    root = _create(client, alice, "r" * 150, title="Saga")
    branch = _create(client, alice, "Second part", parent=root)
    client.post(f"/api/v1/tales/{branch}/vote", headers=bob)

    me = client.get("/api/v1/users/me", headers=alice).json()
    assert me["username"] == "Alice"
    assert [item["tale_id"] for item in me["my_roots"]] == [root]
    assert me["my_roots"][0]["content_preview"] == "r" * 100 + "..."
    assert [item["tale_id"] for item in me["my_branches"]] == [branch]
    assert (me["total_tales_written"], me["total_votes_received"]) == (2, 1)

    updated = client.put(
        "/api/v1/users/me",
        json={"display_name": "Alicia", "bio": "Writes sagas"},
        headers=alice,
    ).json()
    assert updated["display_name"] == "Alicia"
    assert client.get(f"/api/v1/tales/{root}").json()["author_name"] == "Alicia"

    public = client.get("/api/v1/users/alice").json()
    assert (public["display_name"], public["tale_count"], public["vote_count"]) == (
        "Alicia",
        2,
        1,
    )
    assert client.get("/api/v1/users/nobody").status_code == 404
    assert len(client.get("/api/v1/users/alice/tales").json()) == 2
    found = client.get("/api/v1/users/search", params={"query": "ali"}).json()
    assert [item["user_id"] for item in found] == ["alice"]


def test_account_deletion_keeps_tree(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    bob = _headers("bob", "Bob")
    root = _create(client, alice, "Root")
    branch = _create(client, bob, "Bob's branch", parent=root)

    assert client.delete("/api/v1/users/me", headers=bob).status_code == 204

    tale = client.get(f"/api/v1/tales/{branch}").json()
    assert tale["author_name"] == "Ghost"
    assert tale["content"] == "Bob's branch"
    assert client.get("/api/v1/users/bob").status_code == 404


def test_notification_endpoints(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    bob = _headers("bob", "Bob")
    root = _create(client, alice, "Root")
    _create(client, bob, "Branch", parent=root)
    client.post(f"/api/v1/tales/{root}/vote", headers=bob)
    client.post(f"/api/v1/tales/{root}/vote", headers=alice)

    unread = client.get("/api/v1/notifications", headers=alice).json()
    assert sorted(item["type"] for item in unread) == ["BRANCH", "VOTE"]
    assert client.get("/api/v1/notifications", headers=bob).json() == []

    first = unread[0]["notification_id"]
    assert client.post(f"/api/v1/notifications/{first}/read", headers=bob).status_code == 404
    assert client.post(f"/api/v1/notifications/{first}/read", headers=alice).status_code == 204
    assert client.post("/api/v1/notifications/read-all", headers=alice).json() == {"updated": 1}
    assert client.get("/api/v1/notifications", headers=alice).json() == []


def test_trending_job_requires_secret(tmp_path: Path) -> None:
    client = _client(tmp_path)
    alice = _headers("alice", "Alice")
    _create(client, alice, "Root one")
    _create(client, alice, "Root two")

    assert client.post("/api/v1/jobs/update-trending").status_code == 401
    wrong = client.post("/api/v1/jobs/update-trending", headers={"X-Job-Secret": "nope"})
    assert wrong.status_code == 401
    ok = client.post("/api/v1/jobs/update-trending", headers={"X-Job-Secret": JOB_SECRET})
    assert ok.json() == {"updated": 2}


def test_trending_job_without_configured_secret_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("TALE_GRAPH_JOB_SECRET", raising=False)
    client = _client(tmp_path)
    response = client.post("/api/v1/jobs/update-trending", headers={"X-Job-Secret": "x"})
    assert response.status_code == 500


def test_unexpected_errors_are_masked_and_recorded(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken_search(self: TaleService, text: str) -> list[object]:
        raise RuntimeError("index corrupted")

    monkeypatch.setattr(TaleService, "search_tales", broken_search)
    client = _client(tmp_path, raise_server_exceptions=False)

    response = client.get("/api/v1/tales/search", params={"query": "x"})

    assert response.status_code == 500
    assert response.json() == {"detail": "An unexpected error occurred."}
    recorded = SQLiteAnomalyStore(db_path=tmp_path / "content.db").list_recent(scope="api")
    assert [item.code for item in recorded] == ["unhandled_exception"]
    assert recorded[0].metadata()["error"] == "index corrupted"
    assert recorded[0].metadata()["path"] == "/api/v1/tales/search"


def test_jwks_mode_accepts_rs256_tokens(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    issuer = "https://id.example.test/auth/v1"
    audience = "authenticated"
    token, jwks = _oidc_token_and_jwks(issuer=issuer, audience=audience, subject="oidc-user-1")
    monkeypatch.delenv("TALE_GRAPH_JWT_SECRET")
    monkeypatch.setenv("TALE_GRAPH_JWT_ISSUER", issuer)
    monkeypatch.setenv("TALE_GRAPH_JWT_AUDIENCE", audience)
    monkeypatch.setenv("TALE_GRAPH_JWT_JWKS_JSON", json.dumps(jwks))
    client = _client(tmp_path)

    response = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["username"] == "Oidc Writer"

    tampered = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token}x"})
    assert tampered.status_code == 401
