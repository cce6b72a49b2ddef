import logging

from keysync_lib.diagnostics import (
    CollectingDiagnostics,
    EventBusDiagnostics,
    LoggingDiagnostics,
    report_fault,
)
from keysync_lib.errors import (
    CallbackFault,
    ConsistencyViolation,
    KeysyncError,
    KeysyncErrorCode,
    KeysyncErrorContext,
    MalformedRecordError,
    TransportError,
    TransportTimeout,
)
from keysync_lib.events import EVENT_EXCEPTION_NOTIFICATION, EventBus
from keysync_lib.owner import Owner


# ---------------------------------------------------------------------------
# error taxonomy
# ---------------------------------------------------------------------------

def test_error_codes_and_hierarchy():
    assert TransportError().code == KeysyncErrorCode.TRANSPORT_ERROR
    assert TransportTimeout().code == KeysyncErrorCode.TIMEOUT
    assert isinstance(TransportTimeout(), TransportError)
    assert MalformedRecordError().code == KeysyncErrorCode.MALFORMED_RECORD
    assert CallbackFault().code == KeysyncErrorCode.CALLBACK_FAULT
    assert ConsistencyViolation().code == KeysyncErrorCode.CONSISTENCY_VIOLATION
    assert isinstance(ConsistencyViolation(), RuntimeError)


def test_error_carries_cause_and_context():
    cause = ValueError("x")
    ctx = KeysyncErrorContext(key="c1", phase="success")
    err = CallbackFault("wrapped", context=ctx, cause=cause)

    assert err.__cause__ is cause
    assert err.context.key == "c1"
    assert str(err) == "wrapped"


def test_transport_error_status():
    assert TransportError().status == "error"
    assert TransportError(status="abort").status == "abort"
    assert TransportTimeout().status == "timeout"


# ---------------------------------------------------------------------------
# sinks
# ---------------------------------------------------------------------------

def test_report_fault_to_collecting_sink():
    sink = CollectingDiagnostics()
    fault = report_fault(sink, MalformedRecordError(), phase="dispatch", url="a")

    assert sink.faults == [fault]
    assert fault.code == "malformed_record"
    assert fault.detail == {"url": "a"}


def test_report_fault_without_sink_logs_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="keysync_lib.diagnostics"):
        report_fault(None, CallbackFault("oops"), phase="success")
    assert any("oops" in r.getMessage() for r in caplog.records)


def test_failing_sink_is_swallowed(caplog):
    class Broken:
        def report(self, fault):
            raise RuntimeError("sink down")

    fault = report_fault(Broken(), CallbackFault(), phase="success")

    assert fault.phase == "success"
    assert any("sink" in r.getMessage().lower() for r in caplog.records)


def test_logging_sink_includes_cause_traceback(caplog):
    log = logging.getLogger("test.keysync.diag")
    sink = LoggingDiagnostics(log)
    try:
        raise KeyError("inner")
    except KeyError as e:
        err = CallbackFault("outer", cause=e)

    with caplog.at_level(logging.WARNING, logger="test.keysync.diag"):
        report_fault(sink, err, phase="dispatch")

    rec = caplog.records[-1]
    assert rec.exc_info is not None and rec.exc_info[0] is KeyError


def test_event_bus_sink_triggers_exception_notification():
    bus = EventBus()
    seen = []
    bus.register(Owner(), EVENT_EXCEPTION_NOTIFICATION, seen.append)
    sink = EventBusDiagnostics(bus, logging.getLogger("test.keysync.bus"))

    report_fault(sink, KeysyncError("bad"), phase="x")

    assert len(seen) == 1
    assert seen[0].code == "internal_error"
