# =============================================================================
# Database Package
# =============================================================================
# Provides the SQLAlchemy engine, session scope, and ORM models.
#
# Key exports:
#   - session_scope: transactional session context manager
#   - Base: SQLAlchemy declarative base for ORM models
#   - Application, AttachedFile, Analysis, AuditLog: ORM models
# =============================================================================
