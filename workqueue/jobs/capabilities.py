"""
Optional payload capabilities.

A payload only has to implement ``perform()``. Everything else the queue
can use is opt-in, and each opt-in is a separate runtime-checkable protocol
so callers test for a capability with ``isinstance`` instead of probing
attribute names ad hoc.

Lifecycle hooks (``enqueue``, ``before``, ``success``, ``error``, ``after``,
``on_permanent_failure``) take either no arguments or ``(job, *context)``;
see ``workqueue.jobs.execution.hook``.
"""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

HOOK_NAMES = ("enqueue", "before", "success", "error", "after", "on_permanent_failure")


@runtime_checkable
class Performable(Protocol):
    """Minimum contract for anything placed on the queue."""

    def perform(self) -> Any: ...


@runtime_checkable
class UniqueKeyed(Protocol):
    """Payloads that should not be queued twice while a job with the same key exists."""

    def unique_key(self) -> str | None: ...


@runtime_checkable
class ClearsTransientState(Protocol):
    """Payloads holding state (connections, caches) that must not be serialized."""

    def clear_transient_state(self) -> None: ...


@runtime_checkable
class JobIdentitySink(Protocol):
    """Payloads that want to know which job row they are running as."""

    def bind_job_id(self, job_id: Any) -> None: ...


@runtime_checkable
class Reschedulable(Protocol):
    """Payloads overriding the default retry backoff."""

    def reschedule_at(self, now: datetime, attempts: int) -> datetime: ...


@runtime_checkable
class HasMaxAttempts(Protocol):
    """Payloads bounding their retries; without it a job retries forever."""

    def max_attempts(self) -> int | None: ...


@runtime_checkable
class HasDisplayName(Protocol):
    def display_name(self) -> str: ...


def is_performable(obj: Any) -> bool:
    # Classes expose perform as a plain attribute too; only instances qualify
    if isinstance(obj, type):
        return False
    return isinstance(obj, Performable) and callable(getattr(obj, "perform", None))
