import pytest

from keysync_lib.classifier import (
    ClassifiedResponse,
    ResponseKind,
    classify,
    is_success_for_key,
    looks_like_record,
    parse_record,
)
from keysync_lib.errors import KeysyncErrorCode, MalformedRecordError


@pytest.mark.parametrize("raw,kind", [
    ({"c1": {}}, ResponseKind.RECORD),
    ('{"c1": {"v": 1}}', ResponseKind.RECORD),
    ('  \n {"c1": {}}', ResponseKind.RECORD),
    (b'{"c1": {}}', ResponseKind.RECORD),
    ("<div id='c1'>new</div>", ResponseKind.CONTENT),
    ("OK", ResponseKind.CONTENT),
    ("", ResponseKind.EMPTY),
    ("  \t\n", ResponseKind.EMPTY),
    (None, ResponseKind.EMPTY),
])
def test_classify_kinds(raw, kind):
    assert classify(raw).kind == kind


def test_classify_record_is_parsed_and_copied():
    src = {"c1": {"v": 1}}
    resp = classify(src, status="notmodified")

    assert resp.record == src
    assert resp.record is not src
    assert resp.status == "notmodified"
    assert resp.is_record


def test_unparseable_record_reports_and_yields_empty_record(diagnostics):
    resp = classify('{"c1": ', diagnostics=diagnostics, url="save.do")

    assert resp.kind == ResponseKind.RECORD
    assert resp.record == {}
    assert diagnostics.codes == [KeysyncErrorCode.MALFORMED_RECORD.value]
    assert diagnostics.faults[0].detail == {"url": "save.do"}


def test_content_keeps_text():
    resp = classify("<p>hi</p>")
    assert resp.content == "<p>hi</p>"
    assert resp.record is None


def test_parse_record_rejects_non_objects():
    with pytest.raises(MalformedRecordError):
        parse_record("[]")
    with pytest.raises(MalformedRecordError) as exc:
        parse_record("{nope")
    assert exc.value.__cause__ is not None


def test_looks_like_record():
    assert looks_like_record({})
    assert looks_like_record(" {")
    assert not looks_like_record("<div>")
    assert not looks_like_record(None)


# ---------------------------------------------------------------------------
# is_success_for_key
# ---------------------------------------------------------------------------

def test_record_success_requires_true_flag():
    assert is_success_for_key({"c1": {"success": True}}, "c1")
    assert not is_success_for_key({"c1": {"success": "true"}}, "c1")
    assert not is_success_for_key({"c1": {"success": False}}, "c1")
    assert not is_success_for_key({"c2": {"success": True}}, "c1")
    assert not is_success_for_key({"c1": True}, "c1")


def test_raw_content_counts_as_success():
    assert is_success_for_key("<div>saved</div>", "c1")
    assert is_success_for_key(ClassifiedResponse(ResponseKind.CONTENT, content="x"), "c1")


def test_empty_response_is_not_success():
    assert not is_success_for_key("", "c1")
    assert not is_success_for_key(None, "c1")
