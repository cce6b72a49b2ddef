import asyncio
import logging
import pprint

from keysync_lib.client import SyncClient
from keysync_lib.owner import Owner
from keysync_lib.transport import AsyncioTransport

logging.basicConfig(level=logging.DEBUG)

VERSIONS = {}


async def fake_server(request):
    await asyncio.sleep(0.1)
    uid = request.data["componentUid"]
    VERSIONS[uid] = VERSIONS.get(uid, 0) + 1
    return {uid: {"version": VERSIONS[uid], "success": True}}


async def go():
    transport = AsyncioTransport(fake_server)
    client = SyncClient(transport)

    widget = Owner("widget")
    client.notifications.register(widget, ["c1", "c2"], pprint.pprint, required_fields=["version"])

    # c1 requests run one after another, c2 runs alongside them
    client.request("save.do", data={"componentUid": "c1"})
    client.request("publish.do", data={"componentUid": "c1"})
    client.request("save.do", data={"componentUid": "c2"})

    await transport.drain()


asyncio.run(go())
