"""
Notification router.

Key points:
- Input: a record, i.e. a mapping of key -> field-set, as returned by the
  server after a request or pushed by a long-poll feed. Serialized JSON text
  is accepted and parsed first; a record that cannot be parsed aborts the
  whole call before any listener runs.
- Listeners register for a list of keys (or the wildcard "*") under an owner,
  an optional domain_type, and a tier. Lower tiers run first; DELAYED runs
  after every explicit tier.
- Candidates for the record and every nested record are snapshotted before
  any handler runs, so handlers may register/unregister/dispatch freely
  without affecting the current pass.
- Subset delivery: by default a listener only receives the entries of the
  record for its own keys, further narrowed to entries carrying at least one
  of its required_fields. Wildcard listeners always get the full record.
- Nested records under field-set["componentMessages"] are dispatched at the
  same tier, depth-first, before the next tier begins. Their field-sets are
  delivered as tagged copies; the caller's record is never modified.
- Router never raises for handler failures or bad records; it only raises
  ConsistencyViolation for programmer error at register/unregister.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Union

from .config import RouterConfig
from .diagnostics import DiagnosticsSink, FaultReport, report_fault
from .errors import (
    CallbackFault,
    ConsistencyViolation,
    KeysyncErrorContext,
    MalformedRecordError,
)
from .classifier import parse_record
from .owner import is_destroyed, require_owner_id
from .registry import (
    DEFAULT_TIER,
    DELAYED,
    DomainFilter,
    ListenerHandler,
    ListenerRegistration,
    ListenerRegistry,
    Tier,
    as_tier,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Delivery:
    listener_id: int
    tier: Tier
    depth: int  # 0 for the top-level record, +1 per nested level


@dataclass
class RouteResult:
    deliveries: List[Delivery] = field(default_factory=list)
    swept_owners: List[Hashable] = field(default_factory=list)
    faults: List[FaultReport] = field(default_factory=list)
    tiers: List[Tier] = field(default_factory=list)  # visited, top level only
    aborted: bool = False
    error: Optional[MalformedRecordError] = None

    @property
    def delivered(self) -> List[int]:
        return [d.listener_id for d in self.deliveries]

    @property
    def handled(self) -> bool:
        return bool(self.deliveries)


@dataclass
class _Pass:
    """One record level, with candidates captured before any handler runs."""
    record: Mapping[str, Any]
    depth: int
    snapshot: Dict[Tier, Dict[int, ListenerRegistration]]
    nested: List["_Pass"]


class NotificationRouter:
    """
    Priority-ordered, key-indexed fan-out of records to listeners.

    Typical usage:
        router.register(widget, [widget.uid], widget.on_update, required_fields=["version"])
        router.dispatch({"c1": {"version": 3}})
        router.unregister(widget)
    """

    def __init__(
        self,
        *,
        config: Optional[RouterConfig] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        registry: Optional[ListenerRegistry] = None,
    ) -> None:
        self.config = config or RouterConfig()
        self.diagnostics = diagnostics
        self.registry = registry or ListenerRegistry(
            wildcard=self.config.wildcard,
            ignored_keys=self.config.ignored_keys,
        )

    # --- Registration API ---

    def register(
        self,
        owner: Any,
        keys: Union[str, Iterable[str]],
        handler: ListenerHandler,
        *,
        domain_type: Optional[str] = None,
        required_fields: Optional[Iterable[str]] = None,
        subset: bool = True,
        priority: Union[Tier, int, None] = None,
        delayed: bool = False,
        all_keys: bool = False,
    ) -> ListenerRegistration:
        """
        Register `handler` for `keys` on behalf of `owner`.

        priority: explicit tier (int or Tier); otherwise DELAYED if `delayed`,
        else tier 0. keys may be the wildcard "*" (or all_keys=True), which
        forces full-record delivery.
        """
        owner_id = require_owner_id(owner, phase="register")
        key_list = self._validate_keys(keys)
        if not callable(handler):
            raise ConsistencyViolation(
                "register(): handler must be callable",
                context=KeysyncErrorContext(phase="register", domain_type=domain_type),
            )
        if domain_type is not None and not isinstance(domain_type, str):
            raise ConsistencyViolation(
                f"register(): domain_type must be a string if supplied (got {domain_type!r})",
                context=KeysyncErrorContext(phase="register"),
            )
        fields = frozenset(required_fields or ())
        if not all(isinstance(f, str) for f in fields):
            raise ConsistencyViolation(
                "register(): required_fields must be strings",
                context=KeysyncErrorContext(phase="register", domain_type=domain_type),
            )

        wildcard = all_keys or self.config.wildcard in key_list
        if wildcard:
            key_list = [self.config.wildcard]
            subset = False  # nothing specific to subset by
        else:
            key_list = [k for k in key_list if k not in self.registry.ignored_keys]

        if priority is not None:
            tier = as_tier(priority)
        elif delayed:
            tier = DELAYED
        else:
            tier = DEFAULT_TIER

        reg = ListenerRegistration(
            listener_id=self.registry.next_listener_id(),
            owner=owner,
            owner_id=owner_id,
            domain_type=domain_type,
            keys=tuple(key_list),
            required_fields=fields,
            subset=subset,
            tier=tier,
            handler=handler,
            wildcard=wildcard,
        )
        indexed = self.registry.add(reg)

        if self._tracing(owner_id, domain_type):
            logger.debug(
                "register(%s) owner=%r keys=%r tier=%r subset=%s indexed=%s",
                reg.listener_id,
                owner,
                reg.keys,
                tier,
                subset,
                indexed,
            )
        return reg

    def unregister(
        self,
        owner: Any,
        *,
        domain_type: Optional[str] = None,
        handler: Optional[ListenerHandler] = None,
    ) -> int:
        """
        Remove every registration of `owner`, optionally narrowed to one
        domain_type and/or one handler. Returns the number removed.
        """
        owner_id = require_owner_id(owner, phase="unregister")
        if domain_type is not None and not isinstance(domain_type, str):
            raise ConsistencyViolation(
                f"unregister(): domain_type must be a string if supplied (got {domain_type!r})",
                context=KeysyncErrorContext(phase="unregister"),
            )
        if handler is not None and not callable(handler):
            raise ConsistencyViolation(
                "unregister(): handler must be callable if supplied",
                context=KeysyncErrorContext(phase="unregister", domain_type=domain_type),
            )

        removed = self.registry.remove(owner_id, domain_type=domain_type, handler=handler)

        if self._tracing(owner_id, domain_type):
            logger.debug("unregister(%r, domain_type=%s) removed=%d", owner, domain_type, len(removed))
        return len(removed)

    def suspend(self, owner: Any, *, domain_type: Optional[str] = None, suspended: bool = True) -> int:
        """Skip (without removing) the owner's registrations until resumed."""
        owner_id = require_owner_id(owner, phase="suspend")
        regs = self.registry.registrations_for(owner_id, domain_type)
        for reg in regs:
            reg.suspended = suspended
        return len(regs)

    def resume(self, owner: Any, *, domain_type: Optional[str] = None) -> int:
        return self.suspend(owner, domain_type=domain_type, suspended=False)

    # --- Queries (used by pollers) ---

    def has_keys(self, domain_filter: DomainFilter = None) -> bool:
        return self.registry.has_keys(domain_filter)

    def key_map(self, domain_filter: DomainFilter = None) -> Dict[Optional[str], List[str]]:
        return self.registry.key_map(domain_filter)

    # --- Dispatch API ---

    def dispatch(self, record: Union[str, bytes, Mapping[str, Any]], priority: Union[Tier, int, None] = None) -> RouteResult:
        """
        Deliver `record` to every interested listener.

        If `priority` is given only that tier is processed (nested records
        included). Never raises for bad records or failing handlers; the
        returned RouteResult says what happened.
        """
        result = RouteResult()

        try:
            parsed = self._coerce_record(record)
        except MalformedRecordError as e:
            result.aborted = True
            result.error = e
            report_fault(self.diagnostics, e, phase="dispatch")
            return result

        tier = as_tier(priority) if priority is not None else None
        if self.config.trace:
            logger.debug("dispatch(tier=%r) record=%r", tier, parsed)

        plan = self._prepare(parsed, tier, depth=0)
        tiers = [tier] if tier is not None else list(self.registry.tiers)
        for current in tiers:
            result.tiers.append(current)
            self._run(plan, current, result)
        return result

    # --- Internal: dispatch ---

    def _coerce_record(self, record: Any) -> Mapping[str, Any]:
        if isinstance(record, bytes):
            try:
                record = record.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedRecordError(
                    f"Record bytes are not valid UTF-8: {e}",
                    context=KeysyncErrorContext(phase="dispatch"),
                    cause=e,
                ) from e
        if isinstance(record, str):
            return parse_record(record)
        if not isinstance(record, Mapping):
            raise MalformedRecordError(
                f"Record must be a mapping or JSON text (got {type(record).__name__}).",
                context=KeysyncErrorContext(phase="dispatch"),
            )
        return record

    def _prepare(self, record: Mapping[str, Any], tier_filter: Optional[Tier], *, depth: int) -> _Pass:
        """Snapshot candidates for `record` and, recursively, every nested record."""
        children: List[_Pass] = []
        for entry in record.values():
            nested = self._nested_of(entry)
            if nested:
                children.append(self._prepare(self._tagged(nested), tier_filter, depth=depth + 1))
        return _Pass(
            record=record,
            depth=depth,
            snapshot=self.registry.candidates(record.keys(), tier=tier_filter),
            nested=children,
        )

    def _run(self, plan: _Pass, tier: Tier, result: RouteResult) -> None:
        bucket = plan.snapshot.get(tier)
        if bucket:
            self._fire(bucket, plan.record, tier, result, depth=plan.depth)
        for child in plan.nested:
            self._run(child, tier, result)

    def _nested_of(self, entry: Any) -> Optional[Mapping[str, Any]]:
        if not isinstance(entry, Mapping):
            return None
        nested = entry.get(self.config.nested_field)
        return nested if isinstance(nested, Mapping) else None

    def _tagged(self, nested: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Copy of a nested record whose field-sets carry the nested marker, so
        listeners can tell nested deliveries apart. The caller's dicts are
        left untouched.
        """
        marker = self.config.nested_marker
        return {
            key: {**entry, marker: True} if isinstance(entry, Mapping) else entry
            for key, entry in nested.items()
        }

    def _fire(
        self,
        bucket: Mapping[int, ListenerRegistration],
        record: Mapping[str, Any],
        tier: Tier,
        result: RouteResult,
        *,
        depth: int,
    ) -> None:
        for reg in bucket.values():
            if is_destroyed(reg.owner):
                # Garbage collection
                self.registry.remove(reg.owner_id)
                if reg.owner_id not in result.swept_owners:
                    result.swept_owners.append(reg.owner_id)
                continue
            if reg.suspended:
                continue

            subset = self._subset(reg, record)
            if subset is None:
                continue

            if self._tracing(reg.owner_id, reg.domain_type):
                logger.debug("deliver(%s) tier=%r depth=%d subset=%r", reg.listener_id, tier, depth, subset)

            result.deliveries.append(Delivery(reg.listener_id, tier, depth))
            try:
                reg.handler(subset)
            except Exception as e:
                fault = CallbackFault(
                    f"Listener {reg.listener_id} raised {type(e).__name__}: {e}",
                    context=KeysyncErrorContext(
                        phase="dispatch",
                        domain_type=reg.domain_type,
                        listener_id=reg.listener_id,
                    ),
                    cause=e,
                )
                result.faults.append(
                    report_fault(self.diagnostics, fault, phase="dispatch", listener_id=reg.listener_id)
                )

    @staticmethod
    def _subset(reg: ListenerRegistration, record: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        if not reg.subset:
            return record

        subset: Dict[str, Any] = {}
        for key in reg.keys:
            if key not in record:
                continue
            entry = record[key]
            if reg.required_fields:
                # key matched, but the entry must also carry a required field
                if not isinstance(entry, Mapping) or not any(f in entry for f in reg.required_fields):
                    continue
            subset[key] = entry
        return subset or None

    # --- Internal: validation + tracing ---

    def _validate_keys(self, keys: Union[str, Iterable[str]]) -> List[str]:
        if isinstance(keys, str):
            if keys == self.config.wildcard:
                return [keys]
            raise ConsistencyViolation(
                f"register(): keys must be a list of strings or {self.config.wildcard!r} (got {keys!r})",
                context=KeysyncErrorContext(phase="register"),
            )
        try:
            key_list = list(keys)
        except TypeError as e:
            raise ConsistencyViolation(
                f"register(): keys must be a list of strings (got {keys!r})",
                context=KeysyncErrorContext(phase="register"),
                cause=e,
            ) from e
        if not all(isinstance(k, str) for k in key_list):
            raise ConsistencyViolation(
                f"register(): every key must be a string (got {key_list!r})",
                context=KeysyncErrorContext(phase="register"),
            )
        return key_list

    def _tracing(self, owner_id: Hashable, domain_type: Optional[str]) -> bool:
        cfg = self.config
        return (
            cfg.trace
            or (cfg.trace_owner_id is not None and owner_id == cfg.trace_owner_id)
            or (cfg.trace_domain_type is not None and domain_type == cfg.trace_domain_type)
        )
