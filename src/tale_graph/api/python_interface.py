"""Python-first client for the tale_graph HTTP API."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from tale_graph.api.contracts import (
    ChoicePageResponse,
    StoryMapResponse,
    TaleCreatedResponse,
    TaleCreateRequest,
    TalePageResponse,
    TaleResponse,
    TaleUpdateRequest,
)


@dataclass(frozen=True)
class AuthSession:
    """Bearer token issued by the identity provider, bound to one API."""

    access_token: str
    api_base_url: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


class TaleApiClient:
    """Tiny typed API client for Python users."""

    def __init__(self, api_base_url: str = "http://127.0.0.1:8000") -> None:
        self._api_base_url = api_base_url.rstrip("/")

    @property
    def api_base_url(self) -> str:
        return self._api_base_url

    def session(self, access_token: str) -> AuthSession:
        return AuthSession(access_token=access_token, api_base_url=self._api_base_url)

    def create_tale(
        self,
        *,
        session: AuthSession,
        content: str,
        title: str | None = None,
        parent_tale_id: str | None = None,
    ) -> str:
        """Write a root tale, or a branch of parent_tale_id; returns the new id."""
        request = TaleCreateRequest(title=title, content=content, parent_tale_id=parent_tale_id)
        response = httpx.post(
            f"{session.api_base_url}/api/v1/tales",
            json=request.model_dump(mode="json"),
            headers=session.headers,
            timeout=30.0,
        )
        response.raise_for_status()
        return TaleCreatedResponse.model_validate(response.json()).tale_id

    def get_tale(self, *, tale_id: str, session: AuthSession | None = None) -> TaleResponse:
        response = httpx.get(
            f"{self._api_base_url}/api/v1/tales/{tale_id}",
            headers=session.headers if session else None,
            timeout=30.0,
        )
        response.raise_for_status()
        return TaleResponse.model_validate(response.json())

    def list_roots(
        self, *, page: int = 1, size: int = 10, sort_by: str = "popular"
    ) -> TalePageResponse:
        response = httpx.get(
            f"{self._api_base_url}/api/v1/tales/roots",
            params={"page": page, "size": size, "sort_by": sort_by},
            timeout=30.0,
        )
        response.raise_for_status()
        return TalePageResponse.model_validate(response.json())

    def list_choices(self, *, tale_id: str, page: int = 1, size: int = 10) -> ChoicePageResponse:
        response = httpx.get(
            f"{self._api_base_url}/api/v1/tales/{tale_id}/choices",
            params={"page": page, "size": size},
            timeout=30.0,
        )
        response.raise_for_status()
        return ChoicePageResponse.model_validate(response.json())

    def vote(self, *, session: AuthSession, tale_id: str) -> bool:
        """Vote once for a tale; False when this user already voted for it."""
        response = httpx.post(
            f"{session.api_base_url}/api/v1/tales/{tale_id}/vote",
            headers=session.headers,
            timeout=30.0,
        )
        if response.status_code == 409:
            return False
        response.raise_for_status()
        return True

    def story_map(self, *, tale_id: str) -> StoryMapResponse:
        response = httpx.get(
            f"{self._api_base_url}/api/v1/tales/{tale_id}/map",
            timeout=30.0,
        )
        response.raise_for_status()
        return StoryMapResponse.model_validate(response.json())

    def search(self, *, query: str) -> list[TaleResponse]:
        response = httpx.get(
            f"{self._api_base_url}/api/v1/tales/search",
            params={"query": query},
            timeout=30.0,
        )
        response.raise_for_status()
        return [TaleResponse.model_validate(item) for item in response.json()]

    def update_tale(
        self,
        *,
        session: AuthSession,
        tale_id: str,
        title: str | None = None,
        content: str | None = None,
    ) -> TaleResponse:
        request = TaleUpdateRequest(title=title, content=content)
        response = httpx.put(
            f"{session.api_base_url}/api/v1/tales/{tale_id}",
            json=request.model_dump(mode="json", exclude_none=True),
            headers=session.headers,
            timeout=30.0,
        )
        response.raise_for_status()
        return TaleResponse.model_validate(response.json())

    def delete_tale(self, *, session: AuthSession, tale_id: str) -> bool:
        """Delete or tombstone one of the caller's tales; False when not found or not owned."""
        response = httpx.delete(
            f"{session.api_base_url}/api/v1/tales/{tale_id}",
            headers=session.headers,
            timeout=30.0,
        )
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True


__all__ = ["AuthSession", "TaleApiClient"]
