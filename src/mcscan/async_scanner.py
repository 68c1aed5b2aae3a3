import asyncio
import time
from dataclasses import asdict, dataclass

from mcscan.config import ScanConfig
from mcscan.exceptions import ValidationError
from mcscan.handshake import query_status
from mcscan.ip_range import IpRange, to_dotted_quad, to_integer
from mcscan.prober import ProbeResult, probe
from mcscan.progress_log import ProgressLogger
from mcscan.store import KeyedStore, status_fields

RULE = "=" * 64


@dataclass
class ScanStats:
    """Live counters for one scan; read by job handles while it runs."""

    total: int = 0
    scanned: int = 0
    filtered: int = 0
    closed: int = 0
    open: int = 0
    online: int = 0
    no_protocol: int = 0
    persist_errors: int = 0
    task_errors: int = 0
    batches: int = 0

    def to_dict(self):
        return asdict(self)


def validate_scan_request(start_ip, end_ip, batch_size, config):
    """Return ``(IpRange, batch_size)`` or raise ValidationError."""
    ip_range = IpRange.parse(start_ip, end_ip)
    if batch_size is None:
        batch_size = config.default_batch_size
    if isinstance(batch_size, bool) or not isinstance(batch_size, int):
        raise ValidationError("Batch size must be an integer", details={"batch_size": batch_size})
    if batch_size < 1:
        raise ValidationError("Batch size must be at least 1", details={"batch_size": batch_size})
    if batch_size > config.max_batch_size:
        raise ValidationError(
            f"Batch size is limited to a maximum of {config.max_batch_size}",
            details={"batch_size": batch_size},
        )
    return ip_range, batch_size


async def scan_and_save(ip_address, port=None, *, config, store: KeyedStore, logger, stats=None):
    """
    Probe one host, query its status if the port is open and upsert the
    result. Every outcome is logged; a failed save is logged and counted
    but never raised.
    """
    to_integer(ip_address)
    port = port or config.port
    if stats is None:
        stats = ScanStats()
    stats.scanned += 1

    if await probe(ip_address, port, config.timeout) is not ProbeResult.OPEN:
        stats.closed += 1
        logger.log(f"🔴 {ip_address}:{port} - Port closed or timeout.", file_only=True)
        return None
    stats.open += 1

    status = await query_status(ip_address, port, config.handshake_timeout, config.protocol_version)
    if status is None:
        stats.no_protocol += 1
        logger.log(f"🟡 {ip_address}:{port} - Port open, but no Minecraft response. (Ignored)")
        return None

    try:
        record = await store.upsert((ip_address, port), status_fields(status))
    except Exception as e:
        stats.persist_errors += 1
        logger.log(f"⚠️ {ip_address}:{port} - ONLINE, but saving failed: {e}")
        return None
    stats.online += 1
    logger.log(
        f"🟢 {ip_address}:{port} - ONLINE! Players: {status.players_online}/{status.players_max}"
        f" | {status.version} | {status.motd[:80]}"
    )
    return record


async def _run_batch(window, *, config, store, logger, stats):
    targets = window.targets()
    stats.filtered += len(window) - len(targets)
    tasks = [
        asyncio.create_task(
            scan_and_save(to_dotted_quad(address), config.port, config=config, store=store, logger=logger, stats=stats)
        )
        for address in targets
    ]
    # Barrier: the next window starts only once every task here has finished.
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for address, result in zip(targets, results):
        if isinstance(result, Exception):
            stats.task_errors += 1
            logger.log(f"❗ {to_dotted_quad(address)}:{config.port} - scan task failed: {result!r}")
    stats.batches += 1
    return len(targets)


async def start_range_scan(start_ip, end_ip, batch_size=None, *, config=None, store, logger=None, stats=None):
    """
    Scan start_ip..end_ip (inclusive) in sequential batches of at most
    batch_size concurrent hosts, pausing config.batch_pause between batches.

    Invalid parameters are logged once and raised as ValidationError before
    any network activity or log reset.
    """
    config = config or ScanConfig()
    logger = logger or ProgressLogger(config.log_path)
    if stats is None:
        stats = ScanStats()

    try:
        ip_range, batch_size = validate_scan_request(start_ip, end_ip, batch_size, config)
    except ValidationError as e:
        logger.log(f"❌ {e.message}. Scan aborted.", console_only=True)
        raise

    logger.reset()
    stats.total = len(ip_range)
    started = time.monotonic()
    logger.log(RULE, console_only=True)
    logger.log(f"SCAN START: {start_ip} to {end_ip} | Estimated {stats.total} IPs", console_only=True)
    logger.log(
        f"Mode: CONTROLLED BATCH | Batch Size: {batch_size} | Pause: {int(config.batch_pause * 1000)}ms",
        console_only=True,
    )
    logger.log(RULE, console_only=True)

    for window in ip_range.windows(batch_size):
        probed = await _run_batch(window, config=config, store=store, logger=logger, stats=stats)
        logger.log(f"✅ Batch complete: {window.first_ip} - {window.last_ip}.", console_only=True)
        # no pause after a window whose addresses were all filtered
        if probed and window.end < ip_range.end:
            await asyncio.sleep(config.batch_pause)

    logger.log(RULE, console_only=True)
    logger.log(
        f"SCAN END: {time.monotonic() - started:.1f}s | scanned {stats.scanned} | open {stats.open}"
        f" | online {stats.online} | skipped {stats.filtered}",
        console_only=True,
    )
    logger.log(RULE, console_only=True)
