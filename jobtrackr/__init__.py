# =============================================================================
# JobTrackr — Write-Path Consistency & Derived Data
# =============================================================================
# Job-application tracker core: audited mutations, cross-store deletion,
# and cached AI fit analyses with queued or inline execution.
#
# Package structure:
#   jobtrackr/
#   ├── api/          → FastAPI route handlers (applications, analyses,
#   │                    jobs, operator audit view)
#   ├── db/           → Database engine, session scope, and ORM models
#   ├── models/       → Pydantic V2 schemas (requests, responses, audit
#   │                    snapshots, analysis results)
#   ├── services/     → Business logic (audit trail, mutation & deletion
#   │                    coordinators, analysis cache, blob store, LLM)
#   └── workers/      → Celery configuration, tasks, and the job dispatcher
# =============================================================================
