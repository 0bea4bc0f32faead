# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - applications.py: Audited create/update/delete and file attachments
#   - analyses.py: Fit analysis submission and job polling
#   - audit.py: Operator review of the audit log (admin only)
#   - deps.py: Gateway identity, sessions, coordinator providers
# =============================================================================
