"""Typed contracts shared by API handlers and Python interfaces."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ContractModel(BaseModel):
    """Base model config used by all API contracts."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class TaleCreateRequest(ContractModel):
    """Write a new root tale, or a branch when parent_tale_id is set."""

    title: str | None = Field(default=None, max_length=300)
    content: str = Field(min_length=1, max_length=20_000)
    parent_tale_id: str | None = Field(default=None, min_length=1, max_length=64)


class TaleCreatedResponse(ContractModel):
    tale_id: str


class TaleUpdateRequest(ContractModel):
    """Edit an existing tale; omitted fields stay unchanged."""

    title: str | None = Field(default=None, max_length=300)
    content: str | None = Field(default=None, min_length=1, max_length=20_000)

    @model_validator(mode="after")
    def _require_one_field(self) -> TaleUpdateRequest:
        if self.title is None and self.content is None:
            raise ValueError("Provide a title or content to update.")
        return self


class TaleChoiceResponse(ContractModel):
    """One continuation offered below a tale."""

    tale_id: str
    title: str
    votes: int = Field(ge=0)
    preview_text: str


class TaleResponse(ContractModel):
    """Tale payload returned by the API."""

    tale_id: str
    title: str | None
    author_name: str
    content: str
    author_id: str
    created_at_utc: str
    vote_count: int = Field(default=0, ge=0)
    viewer_has_voted: bool = False
    series_votes: int = Field(default=0, ge=0)
    last_activity_at_utc: str | None = None
    choices: list[TaleChoiceResponse] = Field(default_factory=list)


class TalePageResponse(ContractModel):
    items: list[TaleResponse]
    total_count: int = Field(ge=0)
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)


class ChoicePageResponse(ContractModel):
    items: list[TaleChoiceResponse]
    total_count: int = Field(ge=0)
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)


class VoteResponse(ContractModel):
    tale_id: str
    voted: bool


class StoryMapNodeResponse(ContractModel):
    node_id: str
    label: str
    node_type: Literal["ROOT", "BRANCH"]


class StoryMapEdgeResponse(ContractModel):
    parent_id: str
    child_id: str
    votes: int = Field(ge=0)


class StoryMapResponse(ContractModel):
    """Every node and edge of the tree containing the requested tale."""

    nodes: list[StoryMapNodeResponse] = Field(default_factory=list)
    edges: list[StoryMapEdgeResponse] = Field(default_factory=list)


class TaleSummaryResponse(ContractModel):
    tale_id: str
    title: str | None
    content_preview: str
    created_at_utc: str
    votes_received: int = Field(ge=0)


class UserProfileResponse(ContractModel):
    """Private profile of the authenticated user with their tale groupings."""

    user_id: str
    username: str
    bio: str | None
    avatar_style: str
    joined_at_utc: str
    total_tales_written: int = Field(ge=0)
    total_votes_received: int = Field(ge=0)
    my_roots: list[TaleSummaryResponse]
    my_branches: list[TaleSummaryResponse]


class UserProfileUpdateRequest(ContractModel):
    """Partial profile update; a new display name is copied onto live tales."""

    display_name: str | None = Field(default=None, min_length=1, max_length=120)
    bio: str | None = Field(default=None, max_length=1000)
    avatar_style: str | None = Field(default=None, min_length=1, max_length=40)


class UserResponse(ContractModel):
    user_id: str
    display_name: str
    bio: str | None
    avatar_style: str
    created_at_utc: str


class PublicUserProfileResponse(ContractModel):
    """Public profile with headline counters."""

    user_id: str
    display_name: str
    bio: str | None
    avatar_style: str
    tale_count: int = Field(ge=0)
    vote_count: int = Field(ge=0)
    joined_at_utc: str


class UserSearchResultResponse(ContractModel):
    user_id: str
    display_name: str
    avatar_style: str


class NotificationResponse(ContractModel):
    notification_id: str
    triggered_by_id: str
    triggered_by_name: str
    type: Literal["VOTE", "BRANCH", "SYSTEM"]
    message: str
    related_tale_id: str | None
    is_read: bool
    created_at_utc: str


class MarkAllReadResponse(ContractModel):
    updated: int = Field(ge=0)


class TrendingJobResponse(ContractModel):
    updated: int = Field(ge=0)


class FeedbackRequest(ContractModel):
    """Anonymous feedback; the email is optional so signed-out readers can report issues."""

    email: str | None = Field(
        default=None, max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
    )
    message: str = Field(min_length=1, max_length=5_000)


class FeedbackResponse(ContractModel):
    feedback_id: str
    message: str
