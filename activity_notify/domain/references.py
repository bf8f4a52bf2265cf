"""Polymorphic entity references.

Targets, notifiables, groups and notifiers can be any kind of application
entity. The core stores them as ``(kind, id)`` pairs and turns them back into
objects through an ``EntityRegistry`` that maps each kind to a loader.
"""

import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

Loader = Callable[[str], Optional[Any]]


class UnknownEntityKindError(LookupError):
    """Raised when no loader is registered for an entity kind."""

    pass


class EntityRef(BaseModel):
    """Reference to an application entity by kind and id."""

    kind: str = Field(..., min_length=1, description="Entity kind, e.g. 'user' or 'comment'")
    id: str = Field(..., min_length=1, description="Entity identifier (stored as text)")

    model_config = {"frozen": True}

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        """Accept integer and UUID ids, storing them as text."""
        if v is None:
            raise ValueError("Entity id cannot be None")
        return str(v)

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


def to_ref(entity: Any) -> EntityRef:
    """Convert an entity (or an existing reference) to an EntityRef.

    Entities provide their reference through a ``to_entity_ref()`` method;
    the ``Target`` and ``Notifiable`` base classes implement it.

    Raises:
        TypeError: If the object cannot be referenced
    """
    if isinstance(entity, EntityRef):
        return entity

    to_entity_ref = getattr(entity, "to_entity_ref", None)
    if callable(to_entity_ref):
        return to_entity_ref()

    raise TypeError(
        f"{type(entity).__name__} cannot be used as a notification reference; "
        "implement to_entity_ref() or pass an EntityRef"
    )


def to_optional_ref(entity: Any) -> Optional[EntityRef]:
    """Like to_ref(), but maps None to None."""
    if entity is None:
        return None
    return to_ref(entity)


class EntityRegistry:
    """Registry mapping entity kinds to loader callables.

    A loader receives the id and returns the entity, or None when it does not
    exist. Loaders that signal absence by raising a ``LookupError`` (the
    persistence layer's ``RecordNotFoundError`` is one) are normalized to None
    as well, so callers only ever see one "not found" outcome.

    Example:
        >>> registry = EntityRegistry()
        >>> registry.register("user", users.get)
        >>> registry.load(EntityRef(kind="user", id="7"))
    """

    def __init__(self) -> None:
        self._loaders: Dict[str, Loader] = {}

    def register(self, kind: str, loader: Loader) -> None:
        """Register (or replace) the loader for a kind."""
        self._loaders[kind] = loader

    def is_registered(self, kind: str) -> bool:
        return kind in self._loaders

    def load(self, ref: EntityRef) -> Optional[Any]:
        """Load the entity behind ref.

        Returns:
            The entity, or None if it no longer exists

        Raises:
            UnknownEntityKindError: If no loader is registered for ref.kind
        """
        loader = self._loaders.get(ref.kind)
        if loader is None:
            raise UnknownEntityKindError(f"No loader registered for entity kind '{ref.kind}'")

        try:
            return loader(ref.id)
        except UnknownEntityKindError:
            raise
        except LookupError as e:
            logger.debug(f"Entity {ref} not found: {e}")
            return None
