"""
Listener registry for the notification router.

Indices:
- forward:  domain_type -> key -> {listener_id: ListenerRegistration}
- reverse:  domain_type -> owner_id -> [listener_id, ...]   (bulk removal)
- by id:    listener_id -> ListenerRegistration
- tiers:    sorted list of tiers with at least one indexed registration

The reverse bucket for an owner always holds exactly the ids that owner has in
the forward index; empty key buckets, owner buckets and tiers are pruned on
removal.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Any, Callable, Collection, Dict, FrozenSet, Hashable, Iterable, List, Optional, Tuple, Union


@dataclass(frozen=True, order=True, slots=True)
class Tier:
    """
    Delivery tier. Ordered by (delayed, value), so DELAYED sorts after every
    explicit tier no matter how large its value is.
    """
    delayed: bool
    value: int

    def __repr__(self) -> str:
        return "Tier(DELAYED)" if self.delayed else f"Tier({self.value})"


DEFAULT_TIER = Tier(False, 0)
DELAYED = Tier(True, 20)


def as_tier(priority: Union[Tier, int]) -> Tier:
    if isinstance(priority, Tier):
        return priority
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise TypeError(f"priority must be an int or Tier (got {priority!r})")
    return Tier(False, priority)


ListenerHandler = Callable[[Dict[str, Any]], Any]
DomainFilter = Union[None, str, Collection[str]]


@dataclass(eq=False)
class ListenerRegistration:
    listener_id: int
    owner: Any
    owner_id: Hashable
    domain_type: Optional[str]
    keys: Tuple[str, ...]
    required_fields: FrozenSet[str]
    subset: bool
    tier: Tier
    handler: ListenerHandler
    wildcard: bool = False
    suspended: bool = False


def _domain_matches(domain_type: Optional[str], domain_filter: DomainFilter) -> bool:
    if domain_filter is None:
        return True
    if isinstance(domain_filter, str):
        return domain_type == domain_filter
    return domain_type in domain_filter


class ListenerRegistry:
    def __init__(self, *, wildcard: str = "*", ignored_keys: Iterable[str] = ()) -> None:
        self.wildcard = wildcard
        self.ignored_keys = frozenset(ignored_keys)

        self._listeners: Dict[Optional[str], Dict[str, Dict[int, ListenerRegistration]]] = {}
        self._owners: Dict[Optional[str], Dict[Hashable, List[int]]] = {}
        self._by_id: Dict[int, ListenerRegistration] = {}
        self._tiers: List[Tier] = []
        self._tier_counts: Dict[Tier, int] = {}
        self._last_listener_id: int = 0

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, listener_id: object) -> bool:
        return listener_id in self._by_id

    @property
    def tiers(self) -> Tuple[Tier, ...]:
        return tuple(self._tiers)

    def next_listener_id(self) -> int:
        self._last_listener_id += 1
        return self._last_listener_id

    def get(self, listener_id: int) -> Optional[ListenerRegistration]:
        return self._by_id.get(listener_id)

    # --- Mutation ---

    def add(self, reg: ListenerRegistration) -> bool:
        """
        Index `reg` under each of its keys. Returns False (and indexes nothing)
        when every key is an ignored key.
        """
        keys = [k for k in reg.keys if k not in self.ignored_keys]
        if not keys:
            return False

        forward = self._listeners.setdefault(reg.domain_type, {})
        for key in keys:
            forward.setdefault(key, {})[reg.listener_id] = reg

        self._owners.setdefault(reg.domain_type, {}).setdefault(reg.owner_id, []).append(reg.listener_id)
        self._by_id[reg.listener_id] = reg
        self._hold_tier(reg.tier)
        return True

    def remove(
        self,
        owner_id: Hashable,
        *,
        domain_type: Optional[str] = None,
        handler: Optional[ListenerHandler] = None,
    ) -> List[ListenerRegistration]:
        """
        Remove the owner's registrations, optionally narrowed to one
        domain_type and/or one handler. domain_type=None means every domain.
        """
        domains = [domain_type] if domain_type is not None else list(self._owners)
        removed: List[ListenerRegistration] = []

        for dt in domains:
            owner_index = self._owners.get(dt)
            if not owner_index or owner_id not in owner_index:
                continue
            forward = self._listeners.get(dt, {})

            remaining: List[int] = []
            for listener_id in owner_index[owner_id]:
                reg = self._by_id.get(listener_id)
                if reg is None:
                    continue
                if handler is not None and reg.handler != handler:
                    remaining.append(listener_id)
                    continue

                for key in reg.keys:
                    bucket = forward.get(key)
                    if bucket is None:
                        continue
                    bucket.pop(listener_id, None)
                    if not bucket:
                        del forward[key]
                del self._by_id[listener_id]
                self._release_tier(reg.tier)
                removed.append(reg)

            if remaining:
                owner_index[owner_id] = remaining
            else:
                del owner_index[owner_id]
            if not owner_index:
                del self._owners[dt]
            if not forward:
                self._listeners.pop(dt, None)

        return removed

    def _hold_tier(self, tier: Tier) -> None:
        count = self._tier_counts.get(tier, 0)
        if count == 0:
            bisect.insort(self._tiers, tier)
        self._tier_counts[tier] = count + 1

    def _release_tier(self, tier: Tier) -> None:
        count = self._tier_counts.get(tier, 0) - 1
        if count > 0:
            self._tier_counts[tier] = count
            return
        self._tier_counts.pop(tier, None)
        idx = bisect.bisect_left(self._tiers, tier)
        if idx < len(self._tiers) and self._tiers[idx] == tier:
            del self._tiers[idx]

    # --- Lookup ---

    def candidates(self, record_keys: Iterable[str], *, tier: Optional[Tier] = None) -> Dict[Tier, Dict[int, ListenerRegistration]]:
        """
        Snapshot of registrations matching any of `record_keys` (or the
        wildcard), bucketed by tier. A registration appears at most once.
        """
        lookup = list(record_keys)
        lookup.append(self.wildcard)

        snapshot: Dict[Tier, Dict[int, ListenerRegistration]] = {}
        for forward in self._listeners.values():
            for key in lookup:
                bucket = forward.get(key)
                if not bucket:
                    continue
                for listener_id, reg in bucket.items():
                    if tier is not None and reg.tier != tier:
                        continue
                    snapshot.setdefault(reg.tier, {})[listener_id] = reg
        return snapshot

    def owner_listener_ids(self, owner_id: Hashable, domain_type: Optional[str] = None) -> List[int]:
        domains = [domain_type] if domain_type is not None else list(self._owners)
        out: List[int] = []
        for dt in domains:
            out.extend(self._owners.get(dt, {}).get(owner_id, ()))
        return out

    def registrations_for(self, owner_id: Hashable, domain_type: Optional[str] = None) -> List[ListenerRegistration]:
        return [self._by_id[i] for i in self.owner_listener_ids(owner_id, domain_type) if i in self._by_id]

    def forward_ids(self, domain_type: Optional[str], key: str) -> List[int]:
        return list(self._listeners.get(domain_type, {}).get(key, {}))

    def has_keys(self, domain_filter: DomainFilter = None) -> bool:
        """True if any key (the wildcard included) has a listener in a matching domain."""
        for dt, forward in self._listeners.items():
            if not _domain_matches(dt, domain_filter):
                continue
            if any(forward.values()):
                return True
        return False

    def key_map(self, domain_filter: DomainFilter = None) -> Dict[Optional[str], List[str]]:
        """Keys with live listeners, by domain_type. The wildcard is not a key and is left out."""
        out: Dict[Optional[str], List[str]] = {}
        for dt, forward in self._listeners.items():
            if not _domain_matches(dt, domain_filter):
                continue
            keys = [k for k, bucket in forward.items() if bucket and k != self.wildcard]
            if keys:
                out[dt] = keys
        return out
