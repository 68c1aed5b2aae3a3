import argparse
import asyncio
import logging
import sys

from mcscan.async_scanner import ScanStats, start_range_scan
from mcscan.config import ScanConfig
from mcscan.exceptions import ScanEngineError, ValidationError
from mcscan.handshake import query_status
from mcscan.progress_log import ProgressLogger
from mcscan.prober import ProbeResult, probe
from mcscan.store import MemoryServerStore, open_store


def build_parser():
    parser = argparse.ArgumentParser(description="Scan IPv4 ranges for Minecraft servers")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="scan an IP range and store the servers found")
    scan.add_argument("start_ip")
    scan.add_argument("end_ip")
    scan.add_argument("-b", "--batch-size", type=int, default=None)
    scan.add_argument("-p", "--port", type=int, default=None)
    scan.add_argument("-t", "--timeout", type=float, default=None, help="probe/handshake timeout in seconds")
    scan.add_argument("--log-path", default=None)
    scan.add_argument("--store", choices=("elasticsearch", "memory"), default="elasticsearch")

    ping = sub.add_parser("ping", help="query the status of a single server")
    ping.add_argument("ip")
    ping.add_argument("-p", "--port", type=int, default=None)

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--bind", default="0.0.0.0:5000")
    return parser


async def run_scan(args, config):
    logger = ProgressLogger(config.log_path)
    stats = ScanStats()
    if args.store == "memory":
        store = MemoryServerStore()
        await start_range_scan(args.start_ip, args.end_ip, args.batch_size,
                               config=config, store=store, logger=logger, stats=stats)
        for record in await store.find_online():
            print(f"{record['ip']}:{record['port']} {record['players']['online']}/{record['players']['max']}"
                  f" {record['version']} | {record['motd']}")
    else:
        async with open_store(config) as store:
            await start_range_scan(args.start_ip, args.end_ip, args.batch_size,
                                   config=config, store=store, logger=logger, stats=stats)
    return stats


async def run_ping(args, config):
    port = args.port or config.port
    if await probe(args.ip, port, config.timeout) is not ProbeResult.OPEN:
        print(f"❌ {args.ip}:{port} - port closed or timeout")
        return 1
    status = await query_status(args.ip, port, config.handshake_timeout, config.protocol_version)
    if status is None:
        print(f"🟡 {args.ip}:{port} - port open, no Minecraft response")
        return 1
    print(f"✅ {args.ip}:{port} {status.players_online}/{status.players_max} {status.version}")
    if status.motd:
        print(f"MOTD: {status.motd}")
    return 0


async def run_serve(args, config):
    from hypercorn.asyncio import serve
    from hypercorn.config import Config as HypercornConfig
    from hypercorn.middleware import AsyncioWSGIMiddleware

    from mcscan.api import create_app

    app = create_app(config)
    hypercorn_config = HypercornConfig()
    hypercorn_config.bind = [args.bind]
    try:
        await serve(AsyncioWSGIMiddleware(app), hypercorn_config)
    finally:
        app.extensions["scan_jobs"].shutdown()


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = ScanConfig.from_env()
        if args.command == "scan":
            config = config.with_overrides(
                port=args.port, timeout=args.timeout, handshake_timeout=args.timeout, log_path=args.log_path
            )
            asyncio.run(run_scan(args, config))
            return 0
        if args.command == "ping":
            return asyncio.run(run_ping(args, config))
        asyncio.run(run_serve(args, config))
        return 0
    except ValidationError:
        # already reported by the progress logger
        return 2
    except ScanEngineError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
