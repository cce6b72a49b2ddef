"""
Caller-facing request descriptor.

A RequestDescriptor is what a component hands to the dispatcher. Its
top-level fields are frozen at construction; only the nested containers
(`data` and `control`) may be changed, and only a before_send hook should
change them. The dispatcher never forwards the descriptor itself to the
transport: to_wire() projects an explicit allow-list of fields into a
WireRequest.

Callback slots (direct callables in `callbacks`, owner methods on
`callback_owner`), always called direct-then-owner:
    before_send(descriptor)
    success(response: ClassifiedResponse, status: str)
    error(error: TransportError, status: str)
    complete(result: TransportResult | None, status: str)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .config import DispatcherConfig


@dataclass
class RequestControl:
    """Mutable bookkeeping for a request. Never sent over the wire."""
    key: Optional[str] = None   # explicit queuing key; overrides the key resolver
    abort: bool = False         # set in before_send to skip the transport


@dataclass(frozen=True)
class Callbacks:
    before_send: Optional[Callable[..., Any]] = None
    success: Optional[Callable[..., Any]] = None
    error: Optional[Callable[..., Any]] = None
    complete: Optional[Callable[..., Any]] = None


@dataclass(frozen=True)
class RequestDescriptor:
    url: str
    method: Optional[str] = None
    timeout_s: Optional[float] = None
    data: Dict[str, Any] = field(default_factory=dict)
    data_type: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    control: RequestControl = field(default_factory=RequestControl)
    callbacks: Callbacks = field(default_factory=Callbacks)
    callback_owner: Any = None     # object with before_send/success/error/complete methods
    content_target: Any = None     # object with substitute_with(content) for raw responses
    context: Any = None            # opaque; carried for the caller, never interpreted


@dataclass(frozen=True, slots=True)
class WireRequest:
    """The only request shape a Transport ever sees."""
    url: str
    method: str
    timeout_s: Optional[float]
    data: Mapping[str, Any]
    data_type: str
    headers: Mapping[str, str]


WIRE_FIELDS: Tuple[str, ...] = ("url", "method", "timeout_s", "data", "data_type", "headers")


KeyResolver = Callable[[RequestDescriptor], Optional[str]]


def identity_field_key(field_name: str) -> KeyResolver:
    """
    Key resolver that reads a string identity field from the request payload,
    e.g. identity_field_key("componentUid").
    """

    def _resolve(descriptor: RequestDescriptor) -> Optional[str]:
        value = descriptor.data.get(field_name) if isinstance(descriptor.data, Mapping) else None
        return value if isinstance(value, str) and value else None

    _resolve.__name__ = f"identity_field_key_{field_name}"
    return _resolve


def no_key(descriptor: RequestDescriptor) -> Optional[str]:
    """Key resolver that never queues (only explicit control.key overrides apply)."""
    return None


def resolve_key(descriptor: RequestDescriptor, resolver: Optional[KeyResolver]) -> Optional[str]:
    """Explicit override first, then the resolver, else None."""
    if descriptor.control.key:
        return descriptor.control.key
    if resolver is None:
        return None
    return resolver(descriptor)


def to_wire(descriptor: RequestDescriptor, config: DispatcherConfig) -> WireRequest:
    """Project the allow-listed fields, filling dispatcher defaults."""
    defaults: Dict[str, Any] = {
        "method": config.default_method,
        "timeout_s": config.default_timeout_s,
        "data_type": config.default_data_type,
    }
    values: Dict[str, Any] = {}
    for name in WIRE_FIELDS:
        value = getattr(descriptor, name)
        if value is None and name in defaults:
            value = defaults[name]
        values[name] = value

    values["method"] = str(values["method"]).upper()
    values["data"] = dict(values["data"] or {})
    values["headers"] = dict(values["headers"] or {})
    return WireRequest(**values)
