"""Minecraft Java Edition "Server List Ping" status client.

Wire format: every packet is ``VarInt length | VarInt packet id | payload``.
We send a Handshake (next state = status) followed by an empty Status
Request and expect a Status Response carrying one JSON string.
"""
import asyncio
import json
import re
import struct
from dataclasses import dataclass
from typing import Optional

# Longest string the protocol allows: 32767 chars, up to 4 bytes each.
MAX_STATUS_LENGTH = 32767 * 4
FORMATTING_CODE_RE = re.compile("§.", re.DOTALL)


class ProtocolError(Exception):
    """The peer answered, but not with a status response."""


@dataclass(frozen=True)
class ServerStatus:
    motd: str
    players_online: int
    players_max: int
    version: str


def write_varint(value: int) -> bytes:
    out = bytearray()
    value &= 0xFFFFFFFF
    while True:
        temp = value & 0x7F
        value >>= 7
        if value:
            out.append(temp | 0x80)
        else:
            out.append(temp)
            return bytes(out)


async def read_varint(reader: asyncio.StreamReader) -> int:
    result = 0
    for num_read in range(5):
        byte = (await reader.readexactly(1))[0]
        result |= (byte & 0x7F) << (7 * num_read)
        if not byte & 0x80:
            return result
    raise ProtocolError("VarInt too big")


def varint_size(value: int) -> int:
    return len(write_varint(value))


def pack_packet(packet_id: int, payload: bytes = b"") -> bytes:
    body = write_varint(packet_id) + payload
    return write_varint(len(body)) + body


def build_handshake(host: str, port: int, protocol_version: int = 47) -> bytes:
    host_bytes = host.encode("utf-8")
    payload = (
        write_varint(protocol_version)
        + write_varint(len(host_bytes)) + host_bytes
        + struct.pack(">H", port)
        + write_varint(1)
    )
    return pack_packet(0x00, payload)


def build_status_request() -> bytes:
    return pack_packet(0x00)


def flatten_chat(component) -> str:
    """Reduce a chat component (str, list or dict with text/extra) to text."""
    if isinstance(component, str):
        return component
    if isinstance(component, list):
        return "".join(flatten_chat(part) for part in component)
    if isinstance(component, dict):
        text = component.get("text", "")
        text = text if isinstance(text, str) else str(text)
        return text + flatten_chat(component.get("extra", []))
    return ""


def clean_motd(description) -> str:
    return FORMATTING_CODE_RE.sub("", flatten_chat(description)).strip()


def parse_status(raw: bytes) -> ServerStatus:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ProtocolError(f"Invalid status JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ProtocolError("Status JSON is not an object")
    version = obj.get("version")
    players = obj.get("players")
    if not isinstance(version, dict) or not isinstance(players, dict):
        raise ProtocolError("Status JSON lacks version/players")
    try:
        online = int(players.get("online", 0))
        maximum = int(players.get("max", 0))
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Bad player counts: {e}") from e
    return ServerStatus(
        motd=clean_motd(obj.get("description", "")),
        players_online=online,
        players_max=maximum,
        version=str(version.get("name", "")),
    )


async def _exchange(ip_address, port, protocol_version):
    reader, writer = await asyncio.open_connection(ip_address, port)
    try:
        writer.write(build_handshake(ip_address, port, protocol_version))
        writer.write(build_status_request())
        await writer.drain()

        packet_length = await read_varint(reader)
        packet_id = await read_varint(reader)
        if packet_id != 0x00:
            raise ProtocolError(f"Unexpected packet id {packet_id:#x}")
        str_len = await read_varint(reader)
        if str_len > MAX_STATUS_LENGTH or str_len + varint_size(str_len) + 1 > packet_length:
            raise ProtocolError(f"Status length {str_len} out of bounds")
        return parse_status(await reader.readexactly(str_len))
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


async def query_status(ip_address, port, timeout=3.0, protocol_version=47) -> Optional[ServerStatus]:
    """
    Run the handshake + status exchange against an open port.

    The whole exchange shares one deadline. Returns None when the peer is
    not a Minecraft server or does not answer in time; that is the common
    case for whatever else listens on the port, not an error.
    """
    try:
        return await asyncio.wait_for(_exchange(ip_address, port, protocol_version), timeout=timeout)
    except (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError, ProtocolError):
        return None
