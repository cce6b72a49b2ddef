"""Owner handles: the identity that listener registrations are grouped under."""

from __future__ import annotations

import itertools
from typing import Any, Hashable, Optional, Protocol, runtime_checkable

from .errors import ConsistencyViolation, KeysyncErrorContext


@runtime_checkable
class OwnerLike(Protocol):
    """Anything with a stable `owner_id` and a `destroyed` flag."""

    owner_id: Hashable
    destroyed: bool


class Owner:
    """
    Minimal concrete owner.

    Components either subclass this or carry their own `owner_id`/`destroyed`
    attributes. Once destroyed, the router and event bus drop the owner's
    registrations the next time they come across them.
    """

    _ids = itertools.count(1)

    def __init__(self, name: Optional[str] = None) -> None:
        self.owner_id: int = next(Owner._ids)
        self.name = name
        self.destroyed = False

    def destroy(self) -> None:
        self.destroyed = True

    def __repr__(self) -> str:
        state = " destroyed" if self.destroyed else ""
        return f"<Owner {self.name or ''}#{self.owner_id}{state}>"


def require_owner_id(owner: Any, *, phase: str) -> Hashable:
    """Return the owner's identity or raise ConsistencyViolation."""
    owner_id = getattr(owner, "owner_id", None)
    if owner is None or owner_id is None:
        raise ConsistencyViolation(
            f"{phase}(): owner must provide a non-None owner_id (got {owner!r})",
            context=KeysyncErrorContext(phase=phase),
        )
    return owner_id


def is_destroyed(owner: Any) -> bool:
    return getattr(owner, "destroyed", False) is True
