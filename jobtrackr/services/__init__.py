# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - errors.py: Domain exception taxonomy (mapped to HTTP in main.py)
#   - audit.py: Append-only audit trail, operator queries, latency metric
#   - mutations.py: Audited create/update/attach coordinator
#   - deletion.py: Relational-then-blob deletion coordinator
#   - blobstore.py: Pluggable blob store protocol (local disk)
#   - analysis_cache.py: Fingerprint-keyed analysis cache (upsert)
#   - analysis.py: Fit analysis pipeline shared by both execution modes
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
# =============================================================================
