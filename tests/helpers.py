"""Local TCP peers used by the network tests."""
import asyncio
import json
import socket
from contextlib import asynccontextmanager

from mcscan.handshake import pack_packet, read_varint, write_varint

STATUS = {
    "version": {"name": "Paper 1.20.4", "protocol": 765},
    "players": {"max": 100, "online": 7},
    "description": {"text": "§aHello ", "extra": [{"text": "§lworld"}]},
}


def status_response(payload=None, packet_id=0x00):
    raw = json.dumps(STATUS if payload is None else payload).encode("utf-8")
    return pack_packet(packet_id, write_varint(len(raw)) + raw)


@asynccontextmanager
async def tcp_server(handler):
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    try:
        yield server.sockets[0].getsockname()[1]
    finally:
        server.close()


def replying(data):
    """Handler that reads handshake + status request, answers with ``data`` and hangs up."""

    async def handler(reader, writer):
        try:
            # consume both packets so nothing is left unread when we close
            for _ in range(2):
                await reader.readexactly(await read_varint(reader))
            writer.write(data)
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    return handler


async def silent(reader, writer):
    # accept, never answer, hang up once the client gives up
    await reader.read()
    writer.close()


def unused_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
