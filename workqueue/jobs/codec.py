"""
Payload codec.

A handler is a JSON document recording the payload's registered type id,
the module defining it and its field state::

    {"type": "myapp.mail:WelcomeEmail", "module": "myapp.mail",
     "fields": {"user_id": 42}}

Decoding resolves the type through ``payload_registry``. A type that is not
registered yet gets one chance: its module is imported (which runs its
``@register_payload`` decorators) and the lookup is retried. Anything wrong
with the handler data itself becomes a ``DeserializationError``; failures of
the interpreter or of unrelated imports are left alone.
"""

import importlib
import json
from typing import Any

from pydantic import BaseModel, ValidationError

from workqueue.config.logging import get_logger
from workqueue.core.exceptions import DeserializationError, PayloadEncodingError
from workqueue.core.registries import PayloadRegistry, payload_registry
from workqueue.jobs.capabilities import HasDisplayName, is_performable

logger = get_logger(__name__)

_JSON_SCALARS = (str, int, float, bool, type(None))


def _check_json_value(value: Any, path: str) -> None:
    if isinstance(value, _JSON_SCALARS):
        return
    if isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_json_value(item, f"{path}[{index}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise PayloadEncodingError(
                    f"Field '{path}' has a non-string key {key!r}",
                    {"field": path},
                )
            _check_json_value(item, f"{path}.{key}")
        return
    raise PayloadEncodingError(
        f"Field '{path}' holds unsupported type {type(value).__name__}",
        {"field": path, "type": type(value).__name__},
    )


def _field_state(payload: Any) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")

    getstate = getattr(payload, "__getstate__", None)
    state = getstate() if getstate is not None else None
    if state is None:
        state = vars(payload)
    if not isinstance(state, dict):
        raise PayloadEncodingError(
            f"{type(payload).__name__}.__getstate__ must return a dict"
        )

    state = dict(state)
    for name, value in state.items():
        _check_json_value(value, name)
    return state


def encode(payload: Any, registry: PayloadRegistry = payload_registry) -> str:
    """Serialize a registered payload into a self-describing handler string."""
    cls = type(payload)
    try:
        type_id = registry.type_id_for(cls)
    except KeyError as e:
        raise PayloadEncodingError(str(e.args[0]), {"type": cls.__qualname__}) from None

    document = {
        "type": type_id,
        "module": cls.__module__,
        "fields": _field_state(payload),
    }
    return json.dumps(document, sort_keys=True)


def _parse(handler: str) -> dict[str, Any]:
    try:
        document = json.loads(handler)
    except (TypeError, ValueError) as e:
        raise DeserializationError(f"malformed handler ({e})", handler) from e

    if not isinstance(document, dict) or not isinstance(document.get("type"), str):
        raise DeserializationError("handler has no type tag", handler)
    if not isinstance(document.get("fields", {}), dict):
        raise DeserializationError("handler fields are not an object", handler)
    return document


def _load_module(module_name: str, handler: str) -> None:
    try:
        importlib.import_module(module_name)
    except ModuleNotFoundError as e:
        # Only the payload's own module (or a parent package) being absent is a
        # data problem; a missing dependency of that module is not.
        if e.name and (module_name == e.name or module_name.startswith(e.name + ".")):
            raise DeserializationError(
                f"payload module '{module_name}' not found", handler
            ) from e
        raise


def _resolve(document: dict[str, Any], handler: str, registry: PayloadRegistry) -> type:
    type_id = document["type"]
    if type_id in registry:
        return registry.get(type_id)

    module_name = document.get("module")
    if not isinstance(module_name, str) or not module_name:
        raise DeserializationError(f"unregistered payload type '{type_id}'", handler)

    logger.debug("Loading payload module", type_id=type_id, module=module_name)
    _load_module(module_name, handler)

    if type_id in registry:
        return registry.get(type_id)
    raise DeserializationError(f"unregistered payload type '{type_id}'", handler)


def _build(cls: type, fields: dict[str, Any], handler: str) -> Any:
    try:
        if issubclass(cls, BaseModel):
            return cls.model_validate(fields)

        payload = cls.__new__(cls)
        setstate = getattr(payload, "__setstate__", None)
        if setstate is not None:
            setstate(fields)
        else:
            payload.__dict__.update(fields)
        return payload
    except (TypeError, ValueError, AttributeError, ValidationError) as e:
        raise DeserializationError(
            f"cannot rebuild {cls.__qualname__} ({e})", handler
        ) from e


def decode(handler: str, registry: PayloadRegistry = payload_registry) -> Any:
    """Rebuild the payload stored in ``handler``."""
    document = _parse(handler)
    cls = _resolve(document, handler, registry)
    payload = _build(cls, document.get("fields", {}), handler)

    if not is_performable(payload):
        raise DeserializationError(
            f"{document['type']} does not respond to perform", handler
        )
    return payload


def type_id_from_blob(handler: str) -> str | None:
    """Read the type tag out of a handler without rebuilding the payload."""
    try:
        document = json.loads(handler)
    except (TypeError, ValueError):
        return None
    if isinstance(document, dict) and isinstance(document.get("type"), str):
        return document["type"]
    return None


def job_name(job: Any, payload: Any = None) -> str:
    """Human-readable name for a job, used in logs and listings."""
    try:
        if payload is None:
            payload = decode(job.handler)
    except DeserializationError:
        return type_id_from_blob(job.handler) or "unknown"

    if isinstance(payload, HasDisplayName):
        return payload.display_name()
    try:
        return payload_registry.type_id_for(type(payload))
    except KeyError:
        return type(payload).__qualname__
