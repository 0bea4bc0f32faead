# =============================================================================
# API Dependencies — Identity, Sessions, Coordinators
# =============================================================================
#
# Identity is NOT established here. A trusted gateway in front of the API
# authenticates the caller and forwards:
#
#   X-Actor-Id:   opaque user id  (owner scope for every mutation)
#   X-Actor-Role: "user" | "admin" (admin unlocks the audit endpoints)
#
# When auth_enabled=False (local dev), requests without headers act as an
# anonymous admin.
#
# DESIGN DECISION: FastAPI dependencies (not middleware).
# Each endpoint opts in via Depends(...), the resolved Actor is available in
# the handler, and tests replace any of these through dependency_overrides.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass
from typing import Literal

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from jobtrackr.config import settings
from jobtrackr.db.engine import session_scope
from jobtrackr.services.deletion import DeletionCoordinator
from jobtrackr.services.mutations import MutationCoordinator

logger = logging.getLogger(__name__)

ANONYMOUS_ACTOR_ID = "anonymous"


@dataclass(frozen=True)
class Actor:
    """The caller, as asserted by the gateway."""

    id: str
    role: Literal["user", "admin"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    """
    Resolve the calling actor from gateway headers.

    Raises:
        HTTPException 401: auth enabled and no X-Actor-Id header.
    """
    role = "admin" if (x_actor_role or "").lower() == "admin" else "user"

    if x_actor_id:
        return Actor(id=x_actor_id, role=role)

    if settings.auth_enabled:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header.")

    return Actor(id=ANONYMOUS_ACTOR_ID, role="admin")


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    """
    Allow only admins through.

    Raises:
        HTTPException 403: caller is not an admin.
    """
    if not actor.is_admin:
        logger.warning("Actor %s denied admin endpoint", actor.id)
        raise HTTPException(status_code=403, detail="Admin access required.")
    return actor


def get_session() -> Generator[Session, None, None]:
    """One transactional session per request (read endpoints)."""
    with session_scope() as session:
        yield session


# ---------------------------------------------------------------------------
# Coordinators — lazily created, process-wide
# ---------------------------------------------------------------------------

_mutations: MutationCoordinator | None = None
_deletions: DeletionCoordinator | None = None


def get_mutations() -> MutationCoordinator:
    global _mutations
    if _mutations is None:
        _mutations = MutationCoordinator()
    return _mutations


def get_deletions() -> DeletionCoordinator:
    global _deletions
    if _deletions is None:
        _deletions = DeletionCoordinator()
    return _deletions
