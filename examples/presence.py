"""
An example that shows a Rich Presence while it runs.
"""

# The desktop client has to be running for this to work, since we talk to it over its local IPC
# socket.

# First, the required imports
import datetime
import logging

import trio

from richpipe import Client, RichPresence

logging.basicConfig(level=logging.INFO)

# Create the client with your application's ID.
client = Client(323578534763298816)


# Events are registered on the client's event channel. They are called with the event's data.
@client.events.on("ready")
def ready(data):
    print("Showing presence for {}".format(data["user"]["username"]))


@client.events.on("close")
def closed(reason):
    print("Connection closed: {}".format(reason))


async def main():
    presence = RichPresence(state="Reading the docs", details="Example")
    presence.timestamps = {"start": datetime.datetime.now()}
    presence.buttons = [{"label": "Source", "url": "https://example.com"}]

    async with trio.open_nursery() as nursery:
        # Logging in connects, sends the handshake, and waits for READY.
        await client.login(nursery)
        await client.set_activity(presence)

        await trio.sleep(60)

        await client.clear_activity()
        await client.destroy()


trio.run(main)
