import asyncio

from keysync_lib.dispatcher import RequestDispatcher
from keysync_lib.errors import KeysyncErrorCode, TransportError, TransportTimeout
from keysync_lib.request import Callbacks, RequestDescriptor, WireRequest
from keysync_lib.transport import AsyncioTransport, TransportResult


def wire(url="a", timeout_s=1.0):
    return WireRequest(url=url, method="POST", timeout_s=timeout_s, data={}, data_type="text", headers={})


def run_one(fetch, request):
    results = []

    async def main():
        t = AsyncioTransport(fetch)
        t.send(request, results.append)
        await t.drain()
        return t

    transport = asyncio.run(main())
    assert transport.in_flight == 0
    return results


def test_success_body_is_passed_through():
    async def fetch(req):
        return '{"c1": {}}'

    results = run_one(fetch, wire())

    assert results == [TransportResult.success('{"c1": {}}')]


def test_timeout_becomes_transport_timeout():
    async def fetch(req):
        await asyncio.sleep(10)

    results = run_one(fetch, wire(timeout_s=0.01))

    assert len(results) == 1
    assert not results[0].ok
    assert results[0].status == "timeout"
    assert isinstance(results[0].error, TransportTimeout)
    assert results[0].error.code == KeysyncErrorCode.TIMEOUT


def test_zero_timeout_waits_for_fetch():
    async def fetch(req):
        await asyncio.sleep(0.02)
        return "late"

    results = run_one(fetch, wire(timeout_s=0))

    assert results[0].body == "late"


def test_fetch_exception_becomes_transport_error():
    async def fetch(req):
        raise OSError("refused")

    results = run_one(fetch, wire())

    assert results[0].status == "error"
    assert isinstance(results[0].error.__cause__, OSError)


def test_transport_error_from_fetch_keeps_status():
    async def fetch(req):
        raise TransportError("HTTP 500", status="parsererror")

    results = run_one(fetch, wire())

    assert results[0].status == "parsererror"


def test_close_cancels_and_still_completes_once():
    results = []

    async def fetch(req):
        await asyncio.sleep(10)

    async def main():
        t = AsyncioTransport(fetch)
        t.send(wire(), results.append)
        await asyncio.sleep(0)
        t.close()
        await t.drain()

    asyncio.run(main())

    assert len(results) == 1
    assert results[0].status == "abort"


def test_close_also_fails_requests_launched_by_cancelled_completions():
    statuses = []

    async def fetch(req):
        await asyncio.sleep(10)

    async def main():
        t = AsyncioTransport(fetch)
        d = RequestDispatcher(t)
        for url in ("a", "b", "c"):
            d.submit(RequestDescriptor(
                url=url,
                data={"componentUid": "c1"},
                callbacks=Callbacks(complete=lambda result, status: statuses.append(status)),
            ))
        await asyncio.sleep(0)
        t.close()
        await t.drain()
        return t, d

    t, d = asyncio.run(main())

    assert statuses == ["abort", "abort", "abort"]
    assert t.closed
    assert t.in_flight == 0
    assert not d.is_busy("c1")


def test_dispatcher_over_asyncio_transport_serializes_same_key():
    log = []

    async def fetch(req):
        log.append(("start", req.url))
        await asyncio.sleep(0.01)
        log.append(("end", req.url))
        return ""

    async def main():
        t = AsyncioTransport(fetch)
        d = RequestDispatcher(t)
        for url in ("a", "b"):
            d.submit(RequestDescriptor(url=url, data={"componentUid": "c1"}))
        d.submit(RequestDescriptor(url="other", data={"componentUid": "c2"}))
        await t.drain()
        return d

    d = asyncio.run(main())

    assert log.index(("end", "a")) < log.index(("start", "b"))
    assert log.index(("start", "other")) < log.index(("end", "a"))
    assert not d.is_busy("c1")


def test_done_callback_fault_is_logged_not_raised(caplog):
    async def fetch(req):
        return ""

    def bad_done(result):
        raise RuntimeError("done blew up")

    async def main():
        t = AsyncioTransport(fetch)
        t.send(wire(), bad_done)
        await t.drain()

    asyncio.run(main())

    assert any("completion callback raised" in r.getMessage() for r in caplog.records)


def test_timeout_reaches_error_chain():
    errors = []

    async def fetch(req):
        await asyncio.sleep(10)

    async def main():
        t = AsyncioTransport(fetch)
        d = RequestDispatcher(t)
        d.submit(RequestDescriptor(
            url="slow",
            timeout_s=0.01,
            callbacks=Callbacks(error=lambda err, status: errors.append(status)),
        ))
        await t.drain()

    asyncio.run(main())

    assert errors == ["timeout"]
