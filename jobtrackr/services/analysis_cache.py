# =============================================================================
# Analysis Cache — Content-Addressed Fit Analyses
# =============================================================================
#
# The inference call is slow, billed per token and non-deterministic, so a
# result is computed at most once per (subject, input content):
#
#   fingerprint = SHA-256( raw_input.strip().lower() )
#
#   get_or_compute(subject_id, raw_input, compute_fn)
#     ├── hit  → return the stored record unchanged (no call, no expiry)
#     └── miss → compute_fn(raw_input) → strict validation → upsert → return
#
# DESIGN DECISION: Upsert, not check-then-insert.
# Two requests can miss at the same time. Both compute, both write with
# INSERT ... ON CONFLICT (subject_id, input_fingerprint) DO UPDATE, and the
# later write wins. The unique constraint guarantees a single row per key;
# no advisory lock is taken, so concurrent misses may each pay for one
# inference call.
#
# DESIGN DECISION: Validation happens before the write. A provider answer
# that does not fit FitAnalysisResult raises InvalidProviderResponse and
# nothing is stored, so the next request computes again.
# =============================================================================

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from jobtrackr.db.engine import SessionScope, session_scope
from jobtrackr.db.models import Analysis
from jobtrackr.models.analysis import parse_fit_analysis

logger = logging.getLogger(__name__)

# compute_fn returns the provider's answer: raw text or an already-decoded dict
ComputeFn = Callable[[str], "str | Mapping[str, Any]"]


def normalize(raw_input: str) -> str:
    """Trim surrounding whitespace and lower-case."""
    return raw_input.strip().lower()


def fingerprint(raw_input: str) -> str:
    """SHA-256 hex digest of the normalized input."""
    return hashlib.sha256(normalize(raw_input).encode("utf-8")).hexdigest()


def _upsert(session: Session, values: dict[str, Any]) -> None:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"Upsert not supported on dialect {dialect!r}")

    stmt = insert(Analysis).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Analysis.subject_id, Analysis.input_fingerprint],
        set_={
            "application_id": stmt.excluded.application_id,
            "result": stmt.excluded.result,
            "raw_response": stmt.excluded.raw_response,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    session.execute(stmt)


class AnalysisCache:
    """
    Fingerprint-keyed store of validated analysis results.

    Args:
        session_scope: Transaction factory (tests pass an in-memory one).
    """

    def __init__(self, session_scope: SessionScope = session_scope) -> None:
        self._session_scope = session_scope

    def lookup(self, subject_id: str, raw_input: str) -> Analysis | None:
        """Return the stored record for this input, or None. Read-only."""
        key = fingerprint(raw_input)
        with self._session_scope() as session:
            return session.scalars(
                select(Analysis).where(
                    Analysis.subject_id == subject_id,
                    Analysis.input_fingerprint == key,
                )
            ).one_or_none()

    def get_or_compute(
        self,
        subject_id: str,
        raw_input: str,
        compute_fn: ComputeFn,
        application_id: int | None = None,
    ) -> Analysis:
        """
        Return the cached analysis for `raw_input`, computing it on a miss.

        Args:
            subject_id: What is being analysed (e.g. "application:42").
            raw_input: The fingerprinted input (the job description).
            compute_fn: Called with `raw_input` on a miss only.
            application_id: Links the record to an application so it is
                deleted with it.

        Raises:
            InvalidProviderResponse: compute_fn's answer failed validation.
                Nothing is persisted.
            TransientProviderError: Propagated unchanged from compute_fn.
        """
        key = fingerprint(raw_input)

        cached = self.lookup(subject_id, raw_input)
        if cached is not None:
            logger.info("Analysis cache hit: subject=%s fingerprint=%s", subject_id, key[:12])
            return cached

        logger.info("Analysis cache miss: subject=%s fingerprint=%s", subject_id, key[:12])
        raw = compute_fn(raw_input)
        result, raw_response = parse_fit_analysis(raw)

        now = datetime.now(UTC)
        with self._session_scope() as session:
            _upsert(session, {
                "subject_id": subject_id,
                "application_id": application_id,
                "input_fingerprint": key,
                "result": result.model_dump(mode="json"),
                "raw_response": raw_response,
                "created_at": now,
                "updated_at": now,
            })
            record = session.scalars(
                select(Analysis)
                .where(
                    Analysis.subject_id == subject_id,
                    Analysis.input_fingerprint == key,
                )
                .execution_options(populate_existing=True)
            ).one()

        logger.info(
            "Stored analysis %d (score=%d) for subject=%s",
            record.id, result.score, subject_id,
        )
        return record
