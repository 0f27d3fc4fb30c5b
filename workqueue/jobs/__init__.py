"""
Database-backed job queue.

This package provides the job coordination protocol:
- Payload codec with a type registry for polymorphic units of work
- Enqueueing with best-effort unique-key deduplication
- Reservation through conditional row updates with stale-lock takeover
- Hook-driven invocation and retry/permanent-failure policy
"""
