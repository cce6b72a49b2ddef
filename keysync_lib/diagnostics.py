"""
Diagnostics sinks.

Every fault-isolation boundary in keysync (request callbacks, listener
handlers, record parsing) hands the fault to a DiagnosticsSink through
report_fault(). Sinks are injected at construction; nothing in the library
reports through a global.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol

from .errors import KeysyncError
from .events import EVENT_EXCEPTION_NOTIFICATION, EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FaultReport:
    error: KeysyncError
    phase: str
    detail: Mapping[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> str:
        return self.error.code.value


class DiagnosticsSink(Protocol):
    def report(self, fault: FaultReport) -> None: ...


class LoggingDiagnostics:
    """Write fault reports to a logger, including the original traceback."""

    def __init__(self, log: Optional[logging.Logger] = None, *, level: int = logging.WARNING) -> None:
        self._log = log or logger
        self._level = level

    def report(self, fault: FaultReport) -> None:
        cause = fault.error.__cause__
        self._log.log(
            self._level,
            "%s during %s: %s",
            fault.code,
            fault.phase,
            fault.error,
            exc_info=(type(cause), cause, cause.__traceback__) if cause is not None else None,
        )


class EventBusDiagnostics(LoggingDiagnostics):
    """
    Log the fault, then trigger EVENT_EXCEPTION_NOTIFICATION on the bus so UI
    components (notification panels, error dialogs) can pick it up.
    """

    def __init__(self, bus: EventBus, log: Optional[logging.Logger] = None) -> None:
        super().__init__(log)
        self.bus = bus

    def report(self, fault: FaultReport) -> None:
        super().report(fault)
        self.bus.trigger(EVENT_EXCEPTION_NOTIFICATION, fault)


class CollectingDiagnostics:
    """Keep fault reports in memory; handy for tools and tests."""

    def __init__(self) -> None:
        self.faults: List[FaultReport] = []

    def report(self, fault: FaultReport) -> None:
        self.faults.append(fault)

    @property
    def codes(self) -> List[str]:
        return [f.code for f in self.faults]


def report_fault(
    sink: Optional[DiagnosticsSink],
    error: KeysyncError,
    *,
    phase: str,
    **detail: Any,
) -> FaultReport:
    """
    Hand `error` to `sink`. Never raises: a sink that fails is logged and
    otherwise ignored, so reporting cannot break a dispatch loop.
    """
    fault = FaultReport(error=error, phase=phase, detail=detail)
    if sink is None:
        logger.warning("%s during %s: %s", fault.code, phase, error)
        return fault
    try:
        sink.report(fault)
    except Exception:
        logger.exception("Diagnostics sink %r failed while reporting %s", sink, fault.code)
    return fault
