"""FastAPI application for reading, writing, and voting on branching tales."""

from __future__ import annotations

import hmac
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal

import httpx
import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from tale_graph.adapters.store_factory import create_stores
from tale_graph.api.auth import ActorClaims, validate_bearer_token
from tale_graph.api.contracts import (
    ChoicePageResponse,
    FeedbackRequest,
    FeedbackResponse,
    MarkAllReadResponse,
    NotificationResponse,
    PublicUserProfileResponse,
    StoryMapEdgeResponse,
    StoryMapNodeResponse,
    StoryMapResponse,
    TaleChoiceResponse,
    TaleCreatedResponse,
    TaleCreateRequest,
    TalePageResponse,
    TaleResponse,
    TaleSummaryResponse,
    TaleUpdateRequest,
    TrendingJobResponse,
    UserProfileResponse,
    UserProfileUpdateRequest,
    UserResponse,
    UserSearchResultResponse,
    VoteResponse,
)
from tale_graph.config import Settings
from tale_graph.core.clock import to_utc_iso, utc_now
from tale_graph.core.notifications import StoreNotificationSink
from tale_graph.core.tale_service import TaleService
from tale_graph.core.trending import recompute_trending
from tale_graph.core.user_service import UserService
from tale_graph.domain.errors import (
    NotFoundError,
    StructuralConflictError,
    TopologyConflictError,
    UnauthorizedError,
)
from tale_graph.domain.models import (
    StoredNotification,
    StoredUser,
    StoryMap,
    TaleChoice,
    TaleSummary,
    TaleView,
)

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred."
FEEDBACK_THANKS = "Thank you for your feedback!"


class HealthResponse(BaseModel):
    """Heartbeat payload with one reachability flag per store."""

    status: Literal["Alive", "Degraded"]
    service: str = "tale_graph"
    content: bool
    topology: bool
    timestamp_utc: str


class ApiRootResponse(BaseModel):
    """Describes currently available API capabilities."""

    name: str = "tale_graph"
    persistence: Literal["sqlite"] = "sqlite"
    auth: Literal["bearer-jwt"] = "bearer-jwt"
    endpoints: list[str] = Field(
        default_factory=lambda: [
            "/healthz",
            "/api/v1",
            "/api/v1/tales",
            "/api/v1/tales/roots",
            "/api/v1/tales/search",
            "/api/v1/tales/{tale_id}",
            "/api/v1/tales/{tale_id}/choices",
            "/api/v1/tales/{tale_id}/vote",
            "/api/v1/tales/{tale_id}/map",
            "/api/v1/users/me",
            "/api/v1/users/me/tales/{tale_id}",
            "/api/v1/users/search",
            "/api/v1/users/{user_id}",
            "/api/v1/users/{user_id}/tales",
            "/api/v1/notifications",
            "/api/v1/notifications/{notification_id}/read",
            "/api/v1/notifications/read-all",
            "/api/v1/feedback",
            "/api/v1/jobs/update-trending",
        ]
    )


def _choice_response(choice: TaleChoice) -> TaleChoiceResponse:
    return TaleChoiceResponse(
        tale_id=choice.tale_id,
        title=choice.title,
        votes=choice.votes,
        preview_text=choice.preview_text,
    )


def _tale_response(view: TaleView) -> TaleResponse:
    return TaleResponse(
        tale_id=view.tale_id,
        title=view.title,
        author_name=view.author_name,
        content=view.content,
        author_id=view.author_id,
        created_at_utc=view.created_at_utc,
        vote_count=view.vote_count,
        viewer_has_voted=view.viewer_has_voted,
        series_votes=view.series_votes,
        last_activity_at_utc=view.last_activity_at_utc,
        choices=[_choice_response(choice) for choice in view.choices],
    )


def _map_response(story_map: StoryMap) -> StoryMapResponse:
    return StoryMapResponse(
        nodes=[
            StoryMapNodeResponse(
                node_id=node.node_id, label=node.label, node_type=node.node_type.value
            )
            for node in story_map.nodes
        ],
        edges=[
            StoryMapEdgeResponse(parent_id=edge.parent_id, child_id=edge.child_id, votes=edge.votes)
            for edge in story_map.edges
        ],
    )


def _summary_response(summary: TaleSummary) -> TaleSummaryResponse:
    return TaleSummaryResponse(
        tale_id=summary.tale_id,
        title=summary.title,
        content_preview=summary.content_preview,
        created_at_utc=summary.created_at_utc,
        votes_received=summary.votes_received,
    )


def _user_response(user: StoredUser) -> UserResponse:
    return UserResponse(
        user_id=user.user_id,
        display_name=user.display_name,
        bio=user.bio,
        avatar_style=user.avatar_style,
        created_at_utc=user.created_at_utc,
    )


def _notification_response(notification: StoredNotification) -> NotificationResponse:
    return NotificationResponse(
        notification_id=notification.notification_id,
        triggered_by_id=notification.triggered_by_id,
        triggered_by_name=notification.triggered_by_name,
        type=notification.type.value,
        message=notification.message,
        related_tale_id=notification.related_tale_id,
        is_read=notification.is_read,
        created_at_utc=notification.created_at_utc,
    )


def create_app(
    content_db_path: Path | None = None,
    topology_db_path: Path | None = None,
) -> FastAPI:
    """Create the API application."""
    settings = Settings.from_env(
        content_db_path=content_db_path,
        topology_db_path=topology_db_path,
    )
    stores = create_stores(settings)
    notifications = StoreNotificationSink(stores.content, clock=utc_now)
    tales = TaleService(
        topology=stores.topology,
        content=stores.content,
        notifications=notifications,
        record_anomaly=stores.anomalies.record,
        clock=utc_now,
    )
    users = UserService(topology=stores.topology, content=stores.content, clock=utc_now)
    bearer = HTTPBearer(auto_error=False)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        removed = stores.anomalies.prune_anomalies(
            retention_days=settings.anomaly_retention_days,
            max_rows=settings.anomaly_max_rows,
        )
        logger.info("anomaly.prune removed=%s", removed)
        yield

    app = FastAPI(
        title="tale_graph API",
        version="0.1.0",
        description=(
            "Branching interactive stories: write roots and continuations, vote on "
            "branches, and browse whole story trees."
        ),
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "system", "description": "Service health and runtime metadata."},
            {"name": "api", "description": "API discovery and root-level capability listing."},
            {"name": "tales", "description": "Tale writing, reading, voting, and story maps."},
            {"name": "users", "description": "Profiles, author listings, and accounts."},
            {"name": "notifications", "description": "Vote and branch notifications."},
            {"name": "feedback", "description": "Reader feedback, open to anonymous callers."},
            {"name": "jobs", "description": "Scheduler-triggered batch jobs."},
        ],
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info(
        "api.start content_db_path=%s topology_db_path=%s auth_mode=%s",
        settings.content_db_path,
        settings.topology_db_path,
        "shared-secret" if settings.auth.uses_shared_secret else "jwks",
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(_: Request, exc: UnauthorizedError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(StructuralConflictError)
    async def structural_conflict_handler(
        _: Request, exc: StructuralConflictError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(TopologyConflictError)
    async def topology_conflict_handler(_: Request, exc: TopologyConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("api.unhandled_exception path=%s", request.url.path, exc_info=exc)
        try:
            stores.anomalies.record(
                scope="api",
                code="unhandled_exception",
                severity="error",
                message=UNEXPECTED_ERROR_MESSAGE,
                metadata={
                    "path": request.url.path,
                    "method": request.method,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
        except Exception:  # noqa: BLE001
            logger.exception("api.anomaly_record_failed path=%s", request.url.path)
        return JSONResponse(status_code=500, content={"detail": UNEXPECTED_ERROR_MESSAGE})

    def authenticate(token: str) -> ActorClaims:
        try:
            return validate_bearer_token(token, settings.auth)
        except (jwt.PyJWTError, RuntimeError, ValueError, httpx.HTTPError) as exc:
            logger.info("auth.rejected error_type=%s error=%s", type(exc).__name__, exc)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
            ) from exc

    def optional_actor(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    ) -> ActorClaims | None:
        if credentials is None:
            return None
        return authenticate(credentials.credentials)

    def current_actor(actor: ActorClaims | None = Depends(optional_actor)) -> ActorClaims:
        if actor is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing bearer token",
            )
        users.ensure_profile(user_id=actor.user_id, display_name=actor.display_name)
        return actor

    @app.get("/healthz", response_model=HealthResponse, tags=["system"])
    def healthz() -> HealthResponse:
        content_ok = True
        topology_ok = True
        try:
            stores.content.ping()
        except sqlite3.Error as exc:
            content_ok = False
            logger.warning("health.content_unreachable error=%s", exc)
        try:
            stores.topology.ping()
        except sqlite3.Error as exc:
            topology_ok = False
            logger.warning("health.topology_unreachable error=%s", exc)
        return HealthResponse(
            status="Alive" if content_ok and topology_ok else "Degraded",
            content=content_ok,
            topology=topology_ok,
            timestamp_utc=to_utc_iso(utc_now()),
        )

    @app.get("/api/v1", response_model=ApiRootResponse, tags=["api"])
    def api_v1_root() -> ApiRootResponse:
        return ApiRootResponse()

    @app.post(
        "/api/v1/tales",
        response_model=TaleCreatedResponse,
        tags=["tales"],
        status_code=201,
    )
    def create_tale(
        payload: TaleCreateRequest,
        actor: ActorClaims = Depends(current_actor),
    ) -> TaleCreatedResponse:
        tale_id = tales.create_tale(
            author_id=actor.user_id,
            author_name=actor.display_name,
            content=payload.content,
            title=payload.title or None,
            parent_tale_id=payload.parent_tale_id,
        )
        return TaleCreatedResponse(tale_id=tale_id)

    @app.get("/api/v1/tales/roots", response_model=TalePageResponse, tags=["tales"])
    def list_roots(
        page: int = Query(default=1),
        size: int = Query(default=10),
        sort_by: str = Query(default="popular", max_length=32),
    ) -> TalePageResponse:
        result = tales.list_root_tales(page=page, page_size=size, sort_by=sort_by)
        return TalePageResponse(
            items=[_tale_response(view) for view in result.items],
            total_count=result.total_count,
            page=result.page,
            page_size=result.page_size,
        )

    @app.get("/api/v1/tales/search", response_model=list[TaleResponse], tags=["tales"])
    def search_tales(query: str = Query(default="", max_length=200)) -> list[TaleResponse]:
        return [_tale_response(view) for view in tales.search_tales(query)]

    @app.get("/api/v1/tales/{tale_id}", response_model=TaleResponse, tags=["tales"])
    def get_tale(
        tale_id: str,
        actor: ActorClaims | None = Depends(optional_actor),
    ) -> TaleResponse:
        view = tales.get_tale(tale_id, viewer_id=actor.user_id if actor else None)
        return _tale_response(view)

    @app.put("/api/v1/tales/{tale_id}", response_model=TaleResponse, tags=["tales"])
    def update_tale(
        tale_id: str,
        payload: TaleUpdateRequest,
        actor: ActorClaims = Depends(current_actor),
    ) -> TaleResponse:
        view = tales.update_tale(
            tale_id,
            caller_id=actor.user_id,
            title=payload.title,
            content=payload.content,
        )
        return _tale_response(view)

    @app.delete("/api/v1/tales/{tale_id}", status_code=204, tags=["tales"])
    def delete_tale(tale_id: str, actor: ActorClaims = Depends(current_actor)) -> Response:
        if not tales.delete_tale(tale_id, caller_id=actor.user_id):
            raise HTTPException(status_code=404, detail="Tale not found or you are not the author.")
        return Response(status_code=204)

    @app.get(
        "/api/v1/tales/{tale_id}/choices",
        response_model=ChoicePageResponse,
        tags=["tales"],
    )
    def list_choices(
        tale_id: str,
        page: int = Query(default=1),
        size: int = Query(default=10),
    ) -> ChoicePageResponse:
        result = tales.list_choices(tale_id, page=page, page_size=size)
        return ChoicePageResponse(
            items=[_choice_response(choice) for choice in result.items],
            total_count=result.total_count,
            page=result.page,
            page_size=result.page_size,
        )

    @app.post("/api/v1/tales/{tale_id}/vote", response_model=VoteResponse, tags=["tales"])
    def vote(tale_id: str, actor: ActorClaims = Depends(current_actor)) -> VoteResponse:
        if not tales.vote(tale_id, voter_id=actor.user_id):
            raise HTTPException(status_code=409, detail="Already voted for this tale.")
        return VoteResponse(tale_id=tale_id, voted=True)

    @app.get("/api/v1/tales/{tale_id}/map", response_model=StoryMapResponse, tags=["tales"])
    def story_map(tale_id: str) -> StoryMapResponse:
        return _map_response(tales.get_story_map(tale_id))

    @app.get("/api/v1/users/me", response_model=UserProfileResponse, tags=["users"])
    def my_profile(actor: ActorClaims = Depends(current_actor)) -> UserProfileResponse:
        profile = users.get_profile(actor.user_id, fallback_name=actor.display_name)
        return UserProfileResponse(
            user_id=profile.user_id,
            username=profile.username,
            bio=profile.bio,
            avatar_style=profile.avatar_style,
            joined_at_utc=profile.joined_at_utc,
            total_tales_written=profile.total_tales_written,
            total_votes_received=profile.total_votes_received,
            my_roots=[_summary_response(item) for item in profile.my_roots],
            my_branches=[_summary_response(item) for item in profile.my_branches],
        )

    @app.put("/api/v1/users/me", response_model=UserResponse, tags=["users"])
    def update_my_profile(
        payload: UserProfileUpdateRequest,
        actor: ActorClaims = Depends(current_actor),
    ) -> UserResponse:
        user = users.update_profile(
            actor.user_id,
            display_name=payload.display_name,
            bio=payload.bio,
            avatar_style=payload.avatar_style,
        )
        return _user_response(user)

    @app.delete("/api/v1/users/me", status_code=204, tags=["users"])
    def delete_my_account(actor: ActorClaims = Depends(current_actor)) -> Response:
        users.delete_account(actor.user_id)
        return Response(status_code=204)

    @app.delete("/api/v1/users/me/tales/{tale_id}", status_code=204, tags=["users"])
    def delete_my_tale(tale_id: str, actor: ActorClaims = Depends(current_actor)) -> Response:
        tales.delete_own_tale(tale_id, caller_id=actor.user_id)
        return Response(status_code=204)

    @app.get(
        "/api/v1/users/search",
        response_model=list[UserSearchResultResponse],
        tags=["users"],
    )
    def search_users(
        query: str = Query(default="", max_length=120),
    ) -> list[UserSearchResultResponse]:
        return [
            UserSearchResultResponse(
                user_id=user.user_id,
                display_name=user.display_name,
                avatar_style=user.avatar_style,
            )
            for user in users.search_users(query)
        ]

    @app.get(
        "/api/v1/users/{user_id}",
        response_model=PublicUserProfileResponse,
        tags=["users"],
    )
    def public_profile(user_id: str) -> PublicUserProfileResponse:
        profile = users.get_public_profile(user_id)
        return PublicUserProfileResponse(
            user_id=profile.user_id,
            display_name=profile.display_name,
            bio=profile.bio,
            avatar_style=profile.avatar_style,
            tale_count=profile.tale_count,
            vote_count=profile.vote_count,
            joined_at_utc=profile.joined_at_utc,
        )

    @app.get(
        "/api/v1/users/{user_id}/tales",
        response_model=list[TaleSummaryResponse],
        tags=["users"],
    )
    def user_tales(user_id: str) -> list[TaleSummaryResponse]:
        return [_summary_response(item) for item in users.list_user_tales(user_id)]

    @app.get(
        "/api/v1/notifications",
        response_model=list[NotificationResponse],
        tags=["notifications"],
    )
    def list_notifications(
        actor: ActorClaims = Depends(current_actor),
    ) -> list[NotificationResponse]:
        return [
            _notification_response(item)
            for item in notifications.list_unread(user_id=actor.user_id)
        ]

    @app.post(
        "/api/v1/notifications/read-all",
        response_model=MarkAllReadResponse,
        tags=["notifications"],
    )
    def mark_all_read(actor: ActorClaims = Depends(current_actor)) -> MarkAllReadResponse:
        return MarkAllReadResponse(updated=notifications.mark_all_read(user_id=actor.user_id))

    @app.post(
        "/api/v1/notifications/{notification_id}/read",
        status_code=204,
        tags=["notifications"],
    )
    def mark_read(
        notification_id: str,
        actor: ActorClaims = Depends(current_actor),
    ) -> Response:
        if not notifications.mark_read(notification_id=notification_id, user_id=actor.user_id):
            raise HTTPException(status_code=404, detail="Notification not found")
        return Response(status_code=204)

    @app.post(
        "/api/v1/feedback",
        response_model=FeedbackResponse,
        tags=["feedback"],
        status_code=201,
    )
    def submit_feedback(payload: FeedbackRequest) -> FeedbackResponse:
        feedback_id = stores.content.insert_feedback(
            user_email=payload.email,
            message=payload.message,
            submitted_at_utc=to_utc_iso(utc_now()),
        )
        logger.info(
            "feedback.submitted feedback_id=%s has_email=%s", feedback_id, bool(payload.email)
        )
        return FeedbackResponse(feedback_id=feedback_id, message=FEEDBACK_THANKS)

    @app.post(
        "/api/v1/jobs/update-trending",
        response_model=TrendingJobResponse,
        tags=["jobs"],
    )
    def update_trending(
        x_job_secret: str | None = Header(default=None, alias="X-Job-Secret"),
    ) -> TrendingJobResponse:
        if not settings.job_secret:
            logger.error("jobs.trending job secret is not configured")
            raise HTTPException(status_code=500, detail="Job secret not configured")
        if not x_job_secret or not hmac.compare_digest(x_job_secret, settings.job_secret):
            logger.warning("jobs.trending rejected invalid job secret")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing X-Job-Secret header",
            )
        updated = recompute_trending(
            topology=stores.topology,
            content=stores.content,
            now=utc_now(),
        )
        return TrendingJobResponse(updated=updated)

    return app


app = create_app()
