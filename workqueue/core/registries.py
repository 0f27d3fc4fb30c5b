from typing import Callable, Generic, TypeVar, overload

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def __contains__(self, name: str) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def unfreeze(self) -> None:
        self._frozen = False

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Payload Registry - maps stable type ids in job handlers to payload classes
class PayloadRegistry(Registry[type]):
    """
    Registry of payload classes that may be stored in a job's handler.

    Each class is stored under a stable type id, ``"<module>:<qualname>"``
    unless an explicit name is given, so that a handler written by one
    process can be rebuilt by another.
    """

    def __init__(self):
        super().__init__("Payload")
        self._ids_by_class: dict[type, str] = {}

    def register(self, name: str, implementation: type) -> None:
        super().register(name, implementation)
        self._ids_by_class[implementation] = name

    def type_id_for(self, cls: type) -> str:
        """Return the registered type id of ``cls``."""
        try:
            return self._ids_by_class[cls]
        except KeyError:
            raise KeyError(
                f"Payload class {cls.__module__}.{cls.__qualname__} is not registered"
            ) from None


def default_type_id(cls: type) -> str:
    return f"{cls.__module__}:{cls.__qualname__}"


# Global registry instances (singletons)
payload_registry = PayloadRegistry()


@overload
def register_payload(cls: type, /) -> type: ...


@overload
def register_payload(*, name: str | None = None) -> Callable[[type], type]: ...


def register_payload(cls=None, /, *, name=None):
    """
    Class decorator adding a payload class to the global payload registry.

    Usable bare (``@register_payload``) or with an explicit type id
    (``@register_payload(name="emails.welcome")``).
    """

    def decorator(klass: type) -> type:
        payload_registry.register(name or default_type_id(klass), klass)
        return klass

    if cls is not None:
        return decorator(cls)
    return decorator
