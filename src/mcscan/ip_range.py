"""IPv4 arithmetic: dotted-quad conversion, range enumeration, filtering.

Addresses are plain ints in 0..2**32-1 so they can serve directly as the
scan cursor.
"""
import ipaddress
from dataclasses import dataclass

from mcscan.exceptions import InvalidAddressError, ValidationError

MAX_ADDRESS = 0xFFFFFFFF

RESERVED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "224.0.0.0/4",  # multicast
        "240.0.0.0/4",
    )
)


def to_integer(dotted_quad):
    """Convert ``"a.b.c.d"`` to its 32-bit integer value.

    Raises InvalidAddressError for anything that is not exactly four
    decimal octets in 0..255.
    """
    if not isinstance(dotted_quad, str) or not dotted_quad.strip():
        raise InvalidAddressError(dotted_quad, "Missing IPv4 address")
    try:
        return int(ipaddress.IPv4Address(dotted_quad.strip()))
    except ipaddress.AddressValueError as e:
        raise InvalidAddressError(dotted_quad) from e


def to_dotted_quad(address):
    return str(ipaddress.IPv4Address(address & MAX_ADDRESS))


def is_private_or_reserved(address):
    ip = ipaddress.IPv4Address(address)
    return any(ip in network for network in RESERVED_NETWORKS)


def iter_range(start, end):
    """Every address from start to end, both inclusive, ascending."""
    return iter(range(start, end + 1))


@dataclass(frozen=True)
class BatchWindow:
    """A contiguous slice of the range handled under one concurrency budget."""

    start: int
    end: int

    def __len__(self):
        return self.end - self.start + 1

    def addresses(self):
        return iter_range(self.start, self.end)

    def targets(self):
        """Addresses in the window that should actually be probed."""
        return [a for a in self.addresses() if not is_private_or_reserved(a)]

    @property
    def first_ip(self):
        return to_dotted_quad(self.start)

    @property
    def last_ip(self):
        return to_dotted_quad(self.end)


@dataclass(frozen=True)
class IpRange:
    start: int
    end: int

    def __post_init__(self):
        if self.start > self.end:
            raise ValidationError(
                "Start IP is greater than end IP",
                details={"start": to_dotted_quad(self.start), "end": to_dotted_quad(self.end)},
            )

    @classmethod
    def parse(cls, start_ip, end_ip):
        if not start_ip or not end_ip:
            raise ValidationError("Start or end IP is missing")
        return cls(to_integer(start_ip), to_integer(end_ip))

    def __len__(self):
        return self.end - self.start + 1

    def __iter__(self):
        return iter_range(self.start, self.end)

    def windows(self, batch_size):
        if batch_size < 1:
            raise ValidationError("Batch size must be at least 1", details={"batch_size": batch_size})
        cursor = self.start
        while cursor <= self.end:
            window_end = min(cursor + batch_size - 1, self.end)
            yield BatchWindow(cursor, window_end)
            cursor = window_end + 1
