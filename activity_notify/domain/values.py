"""Configurable values that may be literals, method references or closures.

Notifiable settings such as "who are the targets" or "which group does this
belong to" can be declared as a plain value, as the name of a method on the
notifiable, or as a callable. All three resolve through one entry point:

    >>> Literal(["a@example.com"]).resolve(comment, "comment.created")
    ['a@example.com']
    >>> MethodRef("article_followers").resolve(comment, "comment.created")
    >>> Closure(lambda comment, key: comment.article).resolve(comment, "comment.created")

Callables are invoked with as many of the positional arguments as their
signature accepts, so ``lambda comment: ...`` and
``lambda comment, key: ...`` are both valid.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

_MISSING = object()


def call_with_supported_args(fn: Callable, args: Sequence[Any]) -> Any:
    """Call fn with the leading positional args its signature can accept."""
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return fn(*args)

    params = signature.parameters.values()
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return fn(*args)

    positional = [
        p for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    return fn(*args[: len(positional)])


class ConfigValue(ABC):
    """A value resolved against a context object."""

    @abstractmethod
    def resolve(self, context: Any, *args: Any) -> Any:
        """Resolve the value for context, passing args where accepted."""

    @staticmethod
    def coerce(thing: Any) -> "ConfigValue":
        """Wrap a raw setting: ConfigValues pass through, callables become
        Closures, mappings resolve recursively and everything else is a Literal."""
        if isinstance(thing, ConfigValue):
            return thing
        if isinstance(thing, Mapping):
            return MappingValue({k: ConfigValue.coerce(v) for k, v in thing.items()})
        if callable(thing):
            return Closure(thing)
        return Literal(thing)


@dataclass(frozen=True)
class Literal(ConfigValue):
    value: Any

    def resolve(self, context: Any, *args: Any) -> Any:
        return self.value


@dataclass(frozen=True)
class MethodRef(ConfigValue):
    """Name of a method on the context object."""

    name: str

    def resolve(self, context: Any, *args: Any) -> Any:
        method = getattr(context, self.name, _MISSING)
        if method is _MISSING:
            raise AttributeError(f"{type(context).__name__} has no method '{self.name}'")
        if not callable(method):
            return method
        return call_with_supported_args(method, args)


@dataclass(frozen=True)
class Closure(ConfigValue):
    """Callable receiving the context followed by the resolution args."""

    fn: Callable[..., Any]

    def resolve(self, context: Any, *args: Any) -> Any:
        return call_with_supported_args(self.fn, (context, *args))


@dataclass(frozen=True)
class MappingValue(ConfigValue):
    """Mapping whose values are resolved individually."""

    items: Mapping[str, ConfigValue]

    def resolve(self, context: Any, *args: Any) -> Any:
        return {key: value.resolve(context, *args) for key, value in self.items.items()}


def resolve_value(thing: Any, context: Any, *args: Any) -> Any:
    """Resolve any raw setting or ConfigValue against context."""
    return ConfigValue.coerce(thing).resolve(context, *args)
