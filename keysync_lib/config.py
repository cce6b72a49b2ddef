"""Construction-time settings for the request dispatcher and notification router."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Optional, Tuple


@dataclass(frozen=True)
class DispatcherConfig:
    identity_field: str = "componentUid"   # payload field the default key resolver reads
    ignore_queuing: bool = False           # debugging: run every request concurrently
    default_method: str = "POST"
    default_timeout_s: float = 30.0
    default_data_type: str = "text"


@dataclass(frozen=True)
class RouterConfig:
    nested_field: str = "componentMessages"         # field-set entry holding a nested record
    nested_marker: str = "_isComponentMessagesEntry"
    wildcard: str = "*"
    ignored_keys: Tuple[str, ...] = ("manual",)     # never indexed; not tied to one resource
    trace: bool = False                             # debug-log every register/unregister/delivery
    trace_owner_id: Optional[Hashable] = None       # debug-log only this owner's activity
    trace_domain_type: Optional[str] = None         # debug-log only this domain type's activity
