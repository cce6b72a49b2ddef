#!/usr/bin/env python3
"""
keysync replay tool

Feeds recorded notification records (one JSON object per line) through a
NotificationRouter with a single listener and prints what that listener
would have received. Useful for checking key/field subsets against captured
server traffic.

Output is one JSON object per line:
    {"event": "delivered", "record": <n>, "subset": {...}}
    {"event": "malformed", "record": <n>, "message": "..."}
    {"event": "summary", "records": <n>, "deliveries": <n>, "malformed": <n>}

Exit status: 0 if every record parsed, 1 if any was malformed, 2 on bad usage.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional, TextIO

from keysync_lib.config import RouterConfig
from keysync_lib.diagnostics import CollectingDiagnostics
from keysync_lib.owner import Owner
from keysync_lib.router import NotificationRouter


def _emit(out: TextIO, event: str, **kwargs: Any) -> None:
    obj = {"event": event}
    obj.update(kwargs)
    out.write(json.dumps(obj, sort_keys=True, default=str) + "\n")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="keysync-replay")
    p.add_argument("file", nargs="?", default="-", help="JSONL file of records (default: stdin)")
    p.add_argument("--key", dest="keys", action="append", default=[], help="listen for this key (repeatable; default: all)")
    p.add_argument("--fields", nargs="+", default=[], help="required field names")
    p.add_argument("--domain-type", default=None)
    p.add_argument("--no-subset", action="store_true", help="deliver whole records")
    p.add_argument("--delayed", action="store_true", help="register in the DELAYED tier")
    p.add_argument("--nested-field", default=RouterConfig.nested_field)
    p.add_argument("--verbose", "-v", action="store_true")
    return p


def main(argv: Optional[List[str]] = None, *, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> int:
    args = _build_parser().parse_args(argv)
    out = stdout or sys.stdout

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    diagnostics = CollectingDiagnostics()
    router = NotificationRouter(
        config=RouterConfig(nested_field=args.nested_field, trace=args.verbose),
        diagnostics=diagnostics,
    )

    current: Dict[str, Any] = {"record": 0}
    deliveries = 0

    def on_delivery(subset: Dict[str, Any]) -> None:
        nonlocal deliveries
        deliveries += 1
        _emit(out, "delivered", record=current["record"], subset=subset)

    owner = Owner("replay")
    router.register(
        owner,
        args.keys or "*",
        on_delivery,
        domain_type=args.domain_type,
        required_fields=args.fields,
        subset=not args.no_subset,
        delayed=args.delayed,
    )

    try:
        src = (stdin or sys.stdin) if args.file == "-" else open(args.file, encoding="utf-8")
    except OSError as e:
        _emit(out, "error", message=str(e))
        return 2

    records = 0
    malformed = 0
    try:
        for line in src:
            if not line.strip():
                continue
            records += 1
            current["record"] = records
            result = router.dispatch(line)
            if result.aborted:
                malformed += 1
                _emit(out, "malformed", record=records, message=str(result.error))
    finally:
        if src is not stdin and src is not sys.stdin:
            src.close()

    _emit(out, "summary", records=records, deliveries=deliveries, malformed=malformed)
    return 1 if malformed else 0


if __name__ == "__main__":
    raise SystemExit(main())
