"""
Response classifier.

Server responses are either a structured notification record (a JSON object)
or raw content (e.g. an HTML fragment that replaces a component). classify()
decides which, parses records, and reports parse failures to diagnostics
instead of raising.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .diagnostics import DiagnosticsSink, report_fault
from .errors import KeysyncErrorContext, MalformedRecordError


_RECORD_PREFIX = re.compile(r"^\s*\{")
_BLANK = re.compile(r"^\s*$")


class ResponseKind(str, Enum):
    RECORD = "record"
    CONTENT = "content"
    EMPTY = "empty"


@dataclass(frozen=True, slots=True)
class ClassifiedResponse:
    kind: ResponseKind
    record: Optional[Dict[str, Any]] = None
    content: Optional[str] = None
    status: str = "success"

    @property
    def is_record(self) -> bool:
        return self.kind is ResponseKind.RECORD


def looks_like_record(raw: Any) -> bool:
    if isinstance(raw, Mapping):
        return True
    return isinstance(raw, str) and _RECORD_PREFIX.match(raw) is not None


def parse_record(text: str) -> Dict[str, Any]:
    """Parse JSON text into a record; raises MalformedRecordError."""
    try:
        obj = json.loads(text)
    except (ValueError, TypeError) as e:
        raise MalformedRecordError(
            f"Invalid JSON record: {e}",
            context=KeysyncErrorContext(phase="parse", detail=type(e).__name__),
            cause=e,
        ) from e
    if not isinstance(obj, dict):
        raise MalformedRecordError(
            f"Expected a JSON object but received {type(obj).__name__}.",
            context=KeysyncErrorContext(phase="parse"),
        )
    return obj


def classify(
    raw: Any,
    *,
    status: str = "success",
    diagnostics: Optional[DiagnosticsSink] = None,
    url: Optional[str] = None,
) -> ClassifiedResponse:
    """
    Normalize a raw transport body.

    - Mapping -> RECORD
    - text starting with "{" -> parsed RECORD (empty record if unparseable)
    - other non-blank text -> CONTENT
    - None / blank text -> EMPTY
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, Mapping):
        return ClassifiedResponse(ResponseKind.RECORD, record=dict(raw), status=status)

    if raw is None:
        return ClassifiedResponse(ResponseKind.EMPTY, status=status)

    if not isinstance(raw, str):
        raw = str(raw)

    if _RECORD_PREFIX.match(raw):
        try:
            record = parse_record(raw)
        except MalformedRecordError as e:
            report_fault(diagnostics, e, phase="classify", url=url)
            record = {}
        return ClassifiedResponse(ResponseKind.RECORD, record=record, status=status)

    if _BLANK.match(raw):
        return ClassifiedResponse(ResponseKind.EMPTY, status=status)

    return ClassifiedResponse(ResponseKind.CONTENT, content=raw, status=status)


def is_success_for_key(response: Any, key: str) -> bool:
    """
    True if a response signals success for `key`.

    Raw content is assumed to be a success; a record must carry
    record[key]["success"] is True.
    """
    if not isinstance(response, ClassifiedResponse):
        response = classify(response)
    if response.kind is ResponseKind.CONTENT:
        return True
    if response.kind is ResponseKind.RECORD and response.record is not None:
        entry = response.record.get(key)
        return isinstance(entry, Mapping) and entry.get("success") is True
    return False
