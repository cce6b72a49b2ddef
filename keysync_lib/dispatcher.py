"""
Key-serialized request dispatcher.

Key points:
- Every request may resolve to a key (explicit control.key first, then the
  injected key resolver; the default reads data["componentUid"]).
- For a given key at most one request is in the air. Later requests for the
  same key wait in a FIFO queue and are launched, oldest first, when the
  previous one completes. Requests without a key (or with ignore_queuing set)
  run immediately and concurrently with everything else.
- before_send hooks run immediately before the transport call, so a queued
  request can still be updated (data, control.abort) at the last moment.
- Every admitted request reaches "complete" exactly once: after success,
  after error, or straight away when aborted in before_send.
- Each callback is fault-isolated: an exception is wrapped in CallbackFault,
  reported to diagnostics, and the next callback still runs.
- Dispatcher never retries. Policy (retry/backoff) belongs above it.
"""

from __future__ import annotations

import functools
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, Optional

from .classifier import ClassifiedResponse, classify
from .config import DispatcherConfig
from .diagnostics import DiagnosticsSink, report_fault
from .errors import CallbackFault, KeysyncErrorContext, TransportError
from .request import KeyResolver, RequestDescriptor, WireRequest, identity_field_key, resolve_key, to_wire
from .transport import Transport, TransportResult

logger = logging.getLogger(__name__)


class EnvelopeState(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(eq=False)
class RequestEnvelope:
    """Dispatcher-owned wrapper around one submitted descriptor."""
    descriptor: RequestDescriptor
    key: Optional[str]
    seq: int
    state: EnvelopeState = EnvelopeState.PENDING
    wire: Optional[WireRequest] = None
    response: Optional[ClassifiedResponse] = None
    result: Optional[TransportResult] = None
    serialized: bool = False  # holds the busy slot for `key`

    @property
    def aborted(self) -> bool:
        return self.descriptor.control.abort


@dataclass
class KeyState:
    busy: bool = False
    queue: Deque[RequestEnvelope] = field(default_factory=deque)
    draining: bool = False  # key_completed() loop running for this key
    advance: bool = False   # set when a launched request completed synchronously


# Called first on every successful response, before the success chain.
NotificationHandler = Callable[[ClassifiedResponse, RequestEnvelope], None]

CALLBACK_SLOTS = ("before_send", "success", "error", "complete")


class RequestDispatcher:
    """
    Admit, defer and replay requests by key.

    Typical usage:
        d = RequestDispatcher(transport, notification_handler=router_hook)
        d.submit(RequestDescriptor(url="save.do", data={"componentUid": "c1"}))
        d.submit(RequestDescriptor(url="publish.do", data={"componentUid": "c1"}))  # waits for save.do
    """

    def __init__(
        self,
        transport: Transport,
        *,
        config: Optional[DispatcherConfig] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        key_resolver: Optional[KeyResolver] = None,
        notification_handler: Optional[NotificationHandler] = None,
        on_key_idle: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.transport = transport
        self.config = config or DispatcherConfig()
        self.diagnostics = diagnostics
        self.key_resolver: KeyResolver = key_resolver or identity_field_key(self.config.identity_field)
        self.notification_handler = notification_handler
        self.on_key_idle = on_key_idle

        # Global override, settable at runtime for debugging
        self.ignore_queuing: bool = self.config.ignore_queuing

        self._keys: Dict[str, KeyState] = {}
        self._seq: int = 0

    # --- Admission API ---

    def submit(self, descriptor: RequestDescriptor) -> RequestEnvelope:
        """Wrap a descriptor, resolve its key, and admit it."""
        self._seq += 1
        envelope = RequestEnvelope(
            descriptor=descriptor,
            key=resolve_key(descriptor, self.key_resolver),
            seq=self._seq,
        )
        return self.admit(envelope)

    def admit(self, envelope: RequestEnvelope) -> RequestEnvelope:
        """
        Launch the envelope now, or queue it behind the request already in
        the air for its key.
        """
        key = envelope.key
        if key is not None and not self.ignore_queuing:
            state = self._keys.setdefault(key, KeyState())
            if state.busy:
                envelope.state = EnvelopeState.QUEUED
                envelope.serialized = True
                state.queue.append(envelope)
                logger.debug("Queued request seq=%s key=%s (depth=%d)", envelope.seq, key, len(state.queue))
                return envelope
            state.busy = True
            envelope.serialized = True

        self._launch(envelope)
        return envelope

    def key_completed(self, key: Optional[str]) -> None:
        """
        Advance the queue for `key`: launch the oldest waiting request (the
        key stays busy), or mark the key idle if nothing is waiting.

        Requests that finish synchronously (aborted in before_send, or an
        adapter that completes inside send()) are drained in a loop, not by
        recursion, so a long queue of them cannot exhaust the stack.
        """
        if key is None:
            return
        state = self._keys.get(key)
        if state is None:
            return

        if state.draining:
            # Re-entered from a request the loop below just launched.
            state.advance = True
            return

        state.draining = True
        state.advance = True
        try:
            while state.advance:
                state.advance = False
                if state.queue:
                    envelope = state.queue.popleft()
                    logger.debug("Dequeued request seq=%s key=%s (remaining=%d)", envelope.seq, key, len(state.queue))
                    self._launch(envelope)
                    continue

                state.busy = False
                if self.on_key_idle is not None:
                    self._isolate(None, "key_idle", self.on_key_idle, key)
        finally:
            state.draining = False

    # --- Introspection ---

    def is_busy(self, key: str) -> bool:
        state = self._keys.get(key)
        return state is not None and state.busy

    def queued(self, key: str) -> int:
        state = self._keys.get(key)
        return len(state.queue) if state is not None else 0

    def key_state(self, key: str) -> Optional[KeyState]:
        return self._keys.get(key)

    @property
    def busy_keys(self) -> Iterable[str]:
        return [k for k, s in self._keys.items() if s.busy]

    # --- Internal: request lifecycle ---

    def _release(self, envelope: RequestEnvelope) -> None:
        if envelope.serialized:
            self.key_completed(envelope.key)

    def _launch(self, envelope: RequestEnvelope) -> None:
        envelope.state = EnvelopeState.ACTIVE
        descriptor = envelope.descriptor

        self._run_chain(envelope, "before_send", descriptor)

        if descriptor.control.abort:
            logger.debug("Request seq=%s key=%s aborted in before_send", envelope.seq, envelope.key)
            envelope.state = EnvelopeState.COMPLETED
            self._run_chain(envelope, "complete", None, "aborted")
            self._release(envelope)
            return

        envelope.wire = to_wire(descriptor, self.config)
        logger.debug("Sending seq=%s key=%s %s %s", envelope.seq, envelope.key, envelope.wire.method, envelope.wire.url)

        done = functools.partial(self._on_transport_done, envelope)
        try:
            self.transport.send(envelope.wire, done)
        except Exception as e:
            # An adapter that cannot even accept the request is a transport error.
            done(TransportResult.failure(
                TransportError(
                    f"Transport rejected {envelope.wire.method} {envelope.wire.url}: {e}",
                    context=KeysyncErrorContext(key=envelope.key, phase="transport", url=envelope.wire.url),
                    cause=e,
                )
            ))

    def _on_transport_done(self, envelope: RequestEnvelope, result: TransportResult) -> None:
        if envelope.state is not EnvelopeState.ACTIVE:
            logger.warning(
                "Ignoring duplicate completion for seq=%s key=%s (state=%s)",
                envelope.seq,
                envelope.key,
                envelope.state.value,
            )
            return
        envelope.state = EnvelopeState.COMPLETED
        envelope.result = result

        if result.ok:
            response = classify(
                result.body,
                status=result.status,
                diagnostics=self.diagnostics,
                url=envelope.descriptor.url,
            )
            envelope.response = response
            if self.notification_handler is not None:
                self._isolate(envelope, "notification", self.notification_handler, response, envelope)
            self._run_chain(envelope, "success", response, result.status)
        else:
            error = result.error or TransportError(status=result.status)
            logger.debug("Request seq=%s key=%s failed: %s", envelope.seq, envelope.key, error)
            self._run_chain(envelope, "error", error, result.status)

        self._run_chain(envelope, "complete", result, result.status)
        self._release(envelope)

    def _run_chain(self, envelope: RequestEnvelope, slot: str, *args: Any) -> None:
        """Direct callback, then owner callback; each isolated."""
        descriptor = envelope.descriptor
        direct = getattr(descriptor.callbacks, slot, None)
        if callable(direct):
            self._isolate(envelope, slot, direct, *args)

        owner = descriptor.callback_owner
        if owner is not None:
            owner_cb = getattr(owner, slot, None)
            if callable(owner_cb):
                self._isolate(envelope, slot, owner_cb, *args)

    def _isolate(self, envelope: Optional[RequestEnvelope], phase: str, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except Exception as e:
            key = envelope.key if envelope is not None else (args[0] if args else None)
            url = envelope.descriptor.url if envelope is not None else None
            fault = CallbackFault(
                f"{phase} callback raised {type(e).__name__}: {e}",
                context=KeysyncErrorContext(key=key, phase=phase, url=url),
                cause=e,
            )
            report_fault(self.diagnostics, fault, phase=phase, key=key)
