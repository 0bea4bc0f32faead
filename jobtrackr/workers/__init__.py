# =============================================================================
# Workers Package — Queued Analysis Execution
# =============================================================================
# Handles fit analyses outside the request path:
#   - celery_app.py: Celery application configuration
#   - tasks.py: The run_analysis task (bounded retries, progress reporting)
#   - queue.py: QueueBackend protocol, Celery backend, Redis job registry
#   - dispatcher.py: One submit/poll contract over queued or sync execution
#
# WHY CELERY?
# An inference call can take tens of seconds and fail transiently. Queued
# mode returns a job id immediately, retries transient failures with
# backoff, and lets the client poll for the result. Without a reachable
# broker the dispatcher runs the same job inline instead.
# =============================================================================
