"""Bearer token validation for the story API.

Tokens are verified with a shared HS256 secret when one is configured, and
against the issuer's JWKS signing keys otherwise.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, cast

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from tale_graph.config import AuthSettings

DEFAULT_DISPLAY_NAME = "Anonymous"


@dataclass(frozen=True)
class ActorClaims:
    """Verified identity of the caller."""

    user_id: str
    display_name: str
    email: str | None


@dataclass
class _KeyCache:
    value: dict[str, Any] | None = None
    expires_at: float = 0.0


_JWKS_CACHE = _KeyCache()
_WELL_KNOWN_CACHE = _KeyCache()


def reset_key_caches() -> None:
    _JWKS_CACHE.value = None
    _JWKS_CACHE.expires_at = 0.0
    _WELL_KNOWN_CACHE.value = None
    _WELL_KNOWN_CACHE.expires_at = 0.0


def _get_json(url: str) -> dict[str, Any]:
    with httpx.Client(timeout=10.0, follow_redirects=True) as client:
        response = client.get(url)
        response.raise_for_status()
        payload = response.json()
    if not isinstance(payload, dict):
        raise RuntimeError(f"Expected a JSON object from {url}.")
    return payload


def _resolve_jwks_url(settings: AuthSettings) -> str:
    if settings.jwks_url:
        return settings.jwks_url
    if not settings.issuer:
        raise RuntimeError("TALE_GRAPH_JWT_ISSUER or TALE_GRAPH_JWT_JWKS_URL is required.")
    now = time.monotonic()
    if _WELL_KNOWN_CACHE.value is None or _WELL_KNOWN_CACHE.expires_at <= now:
        url = settings.issuer.rstrip("/") + "/.well-known/openid-configuration"
        _WELL_KNOWN_CACHE.value = _get_json(url)
        _WELL_KNOWN_CACHE.expires_at = now + settings.jwks_ttl_seconds
    jwks_uri = _WELL_KNOWN_CACHE.value.get("jwks_uri")
    if isinstance(jwks_uri, str) and jwks_uri:
        return jwks_uri
    raise RuntimeError("Issuer well-known config missing jwks_uri.")


def _fetch_jwks(settings: AuthSettings) -> dict[str, Any]:
    if settings.jwks_json:
        payload = json.loads(settings.jwks_json)
        if not isinstance(payload, dict):
            raise RuntimeError("TALE_GRAPH_JWT_JWKS_JSON must be an object.")
        return payload
    now = time.monotonic()
    if _JWKS_CACHE.value is not None and _JWKS_CACHE.expires_at > now:
        return _JWKS_CACHE.value
    payload = _get_json(_resolve_jwks_url(settings))
    _JWKS_CACHE.value = payload
    _JWKS_CACHE.expires_at = now + settings.jwks_ttl_seconds
    return payload


def _select_jwk(jwks: dict[str, Any], kid: str | None) -> dict[str, Any]:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        raise RuntimeError("JWKS payload missing keys list.")
    if kid is None:
        if len(keys) == 1 and isinstance(keys[0], dict):
            return keys[0]
        raise RuntimeError("Token header missing kid and JWKS has multiple keys.")
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    raise RuntimeError("JWKS did not contain signing key for token kid.")


def _verification_key(token: str, settings: AuthSettings) -> Any:
    if settings.uses_shared_secret:
        return settings.jwt_secret
    header = jwt.get_unverified_header(token)
    kid = header.get("kid") if isinstance(header, dict) else None
    jwk = _select_jwk(_fetch_jwks(settings), kid)
    return cast(RSAPublicKey, jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk)))


def display_name_from_claims(payload: dict[str, Any]) -> str:
    """`user_metadata.full_name` when the identity provider supplies it."""
    metadata = payload.get("user_metadata")
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return DEFAULT_DISPLAY_NAME
    if isinstance(metadata, dict):
        full_name = metadata.get("full_name")
        if isinstance(full_name, str) and full_name.strip():
            return full_name.strip()
    return DEFAULT_DISPLAY_NAME


def validate_bearer_token(token: str, settings: AuthSettings) -> ActorClaims:
    """Verify signature, expiry, and optional issuer/audience; return the actor."""
    options: dict[str, bool] = {"verify_aud": bool(settings.audience)}
    payload = jwt.decode(
        token,
        key=_verification_key(token, settings),
        algorithms=list(settings.algorithms),
        audience=settings.audience or None,
        issuer=settings.issuer or None,
        options=cast(Any, options),
    )
    if not isinstance(payload, dict):
        raise RuntimeError("Token payload was not an object.")
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise RuntimeError("Token missing subject.")
    email = payload.get("email")
    return ActorClaims(
        user_id=subject.strip(),
        display_name=display_name_from_claims(payload),
        email=email if isinstance(email, str) and email.strip() else None,
    )
