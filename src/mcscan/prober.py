import asyncio
import enum


class ProbeResult(enum.Enum):
    OPEN = "open"
    CLOSED_OR_TIMEOUT = "closed"


async def probe(ip_address, port, timeout=3.0):
    """
    Single TCP connect attempt against ip_address:port.
    Refused, unreachable and timed-out connections all count as closed.
    """
    writer = None
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(ip_address, port), timeout=timeout)
        return ProbeResult.OPEN
    except (OSError, asyncio.TimeoutError):
        return ProbeResult.CLOSED_OR_TIMEOUT
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                # peer reset while closing, the socket is released either way
                pass
