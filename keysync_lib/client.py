"""
client.py: high-level facade wiring the request dispatcher to the
notification router.

Kernel responsibilities:
- Own the RequestDispatcher, NotificationRouter, EventBus and diagnostics sink.
- Route every successful response: records go to notifications.dispatch(),
  raw content goes to the request's content_target.substitute_with().
- Accept server-pushed records (long-poll / comet feeds) via receive().
- Announce drained request queues on the bus (EVENT_KEY_IDLE).

Non-responsibilities:
- Moving bytes (Transport adapter).
- Deciding when to poll (callers use notifications.has_keys()/key_map()).
- Retrying failed requests.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Union

from .classifier import ClassifiedResponse, ResponseKind
from .config import DispatcherConfig, RouterConfig
from .diagnostics import DiagnosticsSink, EventBusDiagnostics
from .dispatcher import RequestDispatcher, RequestEnvelope
from .events import EVENT_KEY_IDLE, EventBus
from .request import Callbacks, KeyResolver, RequestControl, RequestDescriptor
from .router import NotificationRouter, RouteResult
from .transport import Transport


class SyncClient:
    """
    Lifecycle:
      1) client = SyncClient(transport)
      2) client.notifications.register(owner, ["c1"], handler)
      3) client.request("save.do", data={"componentUid": "c1"}, on_success=...)
      4) client.receive(record) for records pushed outside a request
    """

    def __init__(
        self,
        transport: Transport,
        *,
        dispatcher_config: Optional[DispatcherConfig] = None,
        router_config: Optional[RouterConfig] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        key_resolver: Optional[KeyResolver] = None,
        bus: Optional[EventBus] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._log = logger or logging.getLogger(__name__)

        self.bus = bus or EventBus()
        self.diagnostics: DiagnosticsSink = diagnostics or EventBusDiagnostics(self.bus, self._log)
        self.notifications = NotificationRouter(config=router_config, diagnostics=self.diagnostics)
        self.dispatcher = RequestDispatcher(
            transport,
            config=dispatcher_config,
            diagnostics=self.diagnostics,
            key_resolver=key_resolver,
            notification_handler=self._on_response,
            on_key_idle=self._on_key_idle,
        )

    # -------------------------
    # Outbound requests
    # -------------------------

    def request(
        self,
        url: str,
        /,
        *,
        data: Optional[Mapping[str, Any]] = None,
        method: Optional[str] = None,
        timeout_s: Optional[float] = None,
        key: Optional[str] = None,
        on_before_send: Any = None,
        on_success: Any = None,
        on_error: Any = None,
        on_complete: Any = None,
        callback_owner: Any = None,
        content_target: Any = None,
        context: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> RequestEnvelope:
        """Build a RequestDescriptor from keyword arguments and submit it."""
        descriptor = RequestDescriptor(
            url=url,
            method=method,
            timeout_s=timeout_s,
            data=dict(data or {}),
            headers=dict(headers or {}),
            control=RequestControl(key=key),
            callbacks=Callbacks(
                before_send=on_before_send,
                success=on_success,
                error=on_error,
                complete=on_complete,
            ),
            callback_owner=callback_owner,
            content_target=content_target,
            context=context,
        )
        return self.submit(descriptor)

    def submit(self, descriptor: RequestDescriptor) -> RequestEnvelope:
        envelope = self.dispatcher.submit(descriptor)
        self._log.debug("Submitted %s (seq=%s key=%s state=%s)", descriptor.url, envelope.seq, envelope.key, envelope.state.value)
        return envelope

    # -------------------------
    # Inbound records
    # -------------------------

    def receive(self, record: Union[str, bytes, Mapping[str, Any]]) -> RouteResult:
        """Entry point for records that did not arrive as a request response."""
        return self.notifications.dispatch(record)

    def status_keys(self, domain_filter: Any = None) -> Dict[Optional[str], Any]:
        """Keys worth asking the server about, by domain_type (empty if none)."""
        if not self.notifications.has_keys(domain_filter):
            return {}
        return self.notifications.key_map(domain_filter)

    # -------------------------
    # Dispatcher hooks
    # -------------------------

    def _on_response(self, response: ClassifiedResponse, envelope: RequestEnvelope) -> None:
        if response.kind is ResponseKind.RECORD and response.record is not None:
            self.notifications.dispatch(response.record)
        elif response.kind is ResponseKind.CONTENT:
            target = envelope.descriptor.content_target
            substitute = getattr(target, "substitute_with", None)
            if callable(substitute):
                substitute(response.content)

    def _on_key_idle(self, key: str) -> None:
        self.bus.trigger(EVENT_KEY_IDLE, key)
