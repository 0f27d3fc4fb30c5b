"""
Execution coordinator: runs a payload and its lifecycle hooks.
"""

import inspect
from typing import Any

from workqueue.config.logging import get_logger
from workqueue.core.exceptions import DeserializationError, InvocationError
from workqueue.jobs import codec
from workqueue.jobs.capabilities import ClearsTransientState, JobIdentitySink
from workqueue.jobs.models import Job

logger = get_logger(__name__)

# Exception subclasses that still mean the process is in trouble
FATAL_ERRORS: tuple[type[BaseException], ...] = (MemoryError,)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _takes_no_arguments(method: Any) -> bool:
    try:
        signature = inspect.signature(method)
    except (TypeError, ValueError):
        return False
    return not signature.parameters


async def hook(job: Job, name: str, *args: Any, payload: Any = None) -> Any:
    """
    Call the payload's ``name`` hook if it has one.

    Zero-argument hooks are called bare; anything else receives
    ``(job, *args)``. A ``DeserializationError`` (including failing to decode
    the payload in the first place) makes the hook a no-op.
    """
    try:
        if payload is None:
            payload = codec.decode(job.handler)
        method = getattr(payload, name, None)
        if method is None or not callable(method):
            return None
        if _takes_no_arguments(method):
            return await _maybe_await(method())
        return await _maybe_await(method(job, *args))
    except DeserializationError:
        logger.debug("Skipping hook on undecodable payload", job_id=str(job.id), hook=name)
        return None


async def invoke_job(job: Job, payload: Any = None) -> Any:
    """
    Run one job's payload.

    before → clear transient state → bind job id → perform → success.
    A failure runs the ``error`` hook; the ``after`` hook always runs exactly
    once. Anything raised along the way, the ``error`` and ``after`` hooks
    included, leaves as ``InvocationError`` except ``FATAL_ERRORS``, which
    propagate unwrapped.
    """
    if payload is None:
        payload = codec.decode(job.handler)

    try:
        try:
            await hook(job, "before", payload=payload)

            # Serialized state may need resetting before running
            if isinstance(payload, ClearsTransientState):
                payload.clear_transient_state()

            if isinstance(payload, JobIdentitySink):
                payload.bind_job_id(job.id)

            result = await _maybe_await(payload.perform())
            await hook(job, "success", payload=payload)
            return result
        except Exception as e:
            await hook(job, "error", e, payload=payload)
            raise
        finally:
            await hook(job, "after", payload=payload)
    except (InvocationError, *FATAL_ERRORS):
        raise
    except Exception as e:
        raise InvocationError(job.id, e) from e
