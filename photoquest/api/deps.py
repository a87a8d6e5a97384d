"""
photoquest.api.deps — FastAPI dependency injection
===================================================

Process-wide collaborators (engine, settings cache, object store,
classifier, state machine) are built once and cached.  Tests replace them
through ``app.dependency_overrides``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from photoquest.config import PhotoQuestConfig, load_config
from photoquest.database.engine import create_db_engine
from photoquest.engine.cache import ConfigCache
from photoquest.services.attempt_service import QuestAttemptStateMachine
from photoquest.services.classifier_client import ClassifierClient
from photoquest.services.moderation_service import ModerationPipeline
from photoquest.services.review_service import ModerationReviewer
from photoquest.services.storage_service import LocalObjectStore

_WEAK_SECRETS = frozenset({
    "photoquest-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


# ---------------------------------------------------------------------------
# Cached collaborators
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> PhotoQuestConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_cache() -> ConfigCache:
    cache = ConfigCache(get_engine())
    cache.load_all()
    return cache


@lru_cache(maxsize=1)
def get_store() -> LocalObjectStore:
    cfg = get_config()
    return LocalObjectStore(cfg.artifact_dir, cfg.artifact_base_url)


@lru_cache(maxsize=1)
def get_classifier() -> ClassifierClient | None:
    cfg = get_config()
    if not cfg.classifier_url:
        return None
    return ClassifierClient(
        cfg.classifier_url,
        api_key=os.getenv("CLASSIFIER_API_KEY") or None,
        timeout=cfg.classifier_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_state_machine() -> QuestAttemptStateMachine:
    cfg = get_config()
    engine = get_engine()
    cache = get_cache()
    store = get_store()
    pipeline = ModerationPipeline(
        engine, store, get_classifier(), cache, db_timeout=cfg.db_timeout_seconds,
    )
    return QuestAttemptStateMachine(
        engine, cache, store, pipeline,
        db_timeout=cfg.db_timeout_seconds,
        settlement_retry_delay=cfg.settlement_retry_delay,
    )


def get_reviewer(
    machine: Annotated[QuestAttemptStateMachine, Depends(get_state_machine)],
) -> ModerationReviewer:
    return ModerationReviewer(machine)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return payload


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return the player payload (``sub`` is the user id)."""
    return _decode_bearer(authorization)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin payload. Raises 401/403 if invalid."""
    payload = _decode_bearer(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
