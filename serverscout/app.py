import argparse
from dataclasses import replace
from pathlib import Path
from typing import Optional

from . import __version__
from .config import Settings
from .errors import InvalidOverrideFormat
from .logger import get_logger
from .network import detect_device_network
from .resolver import Resolver
from .scheduler import ThreadScheduler


def build_resolver(args: argparse.Namespace, settings: Optional[Settings] = None) -> Resolver:
    settings = settings or Settings.from_env()
    if getattr(args, "store", None):
        settings = replace(settings, store=args.store)
    logger = get_logger(
        level="DEBUG" if getattr(args, "verbose", False) else settings.log_level,
        log_dir=Path(settings.log_dir),
    )
    return Resolver(settings=settings, scheduler=ThreadScheduler(logger=logger), logger=logger)


def cmd_resolve(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    if args.wait:
        resolver.discover_now()
    endpoint = resolver.resolve()
    print(endpoint.base_url)
    print(f"Provenance: {resolver.state.provenance}")
    if not args.wait and resolver.state.provenance in ("cache", "default"):
        print("Refreshing before exit; the next run will use the result.")


def cmd_discover(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    result = resolver.discover_now()
    if args.verbose:
        resolver.logger.log_metrics_summary()
    if result is None:
        print("No server found. Use 'serverscout override <ip>' to set one manually.")
        raise SystemExit(1)
    print(f"Found: {result.endpoint.base_url}")
    print(f"  Origin: {result.candidate.origin}")
    print(f"  Response time: {result.elapsed * 1000:.0f} ms")
    if result.server_version:
        print(f"  Server version: {result.server_version}")


def cmd_override(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    try:
        endpoint = resolver.override(args.address)
    except InvalidOverrideFormat as e:
        print("Invalid:")
        for err in e.errors:
            print(f" - {err}")
        raise SystemExit(2)
    print(f"Manual server set: {endpoint.base_url}")


def cmd_clear(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    resolver.clear_override()
    print("Manual server and cached endpoint cleared.")


def cmd_reset(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    resolver.reset()
    print("Network configuration reset.")


def cmd_test(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    try:
        ok = resolver.test_connection(args.address)
    except InvalidOverrideFormat as e:
        raise SystemExit(str(e))
    print("Reachable" if ok else "Not reachable")
    if not ok:
        raise SystemExit(1)


def cmd_info(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    network = detect_device_network()
    print(f"Network type: {network.transport}")
    print(f"Device IP: {network.ip or 'unknown'}")
    print(f"WiFi SSID: {network.wifi_name or 'Not connected'}")
    print(f"Manual server: {resolver.cache.get_manual() or '-'}")
    cached = resolver.cache.get()
    print(f"Cached server: {cached.base_url if cached else '-'}")
    history = resolver.cache.host_history()
    print(f"Known hosts: {', '.join(history) if history else '-'}")


def cmd_candidates(args: argparse.Namespace) -> None:
    resolver = build_resolver(args)
    device_ip = args.device_ip or detect_device_network().ip
    for i, candidate in enumerate(resolver.candidate_source.candidates(device_ip), start=1):
        if args.limit and i > args.limit:
            break
        print(f"{i:>3}. [{candidate.origin}] {candidate.endpoint.base_url}")


def main():
    parser = argparse.ArgumentParser(prog="serverscout", description="Find the backend server this client should talk to")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--store", help="JSON path or sqlite:/// URL (default: SERVERSCOUT_STORE or data/serverscout.json)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log probe details to the console")

    subparsers = parser.add_subparsers(dest="command")
    res = subparsers.add_parser("resolve", help="Print the endpoint to use right now; a background refresh finishes before exit")
    res.add_argument("--wait", action="store_true", help="Run discovery first instead of in the background")
    res.set_defaults(func=cmd_resolve)

    dis = subparsers.add_parser("discover", help="Run one discovery pass and cache the winner")
    dis.set_defaults(func=cmd_discover)

    ovr = subparsers.add_parser("override", help="Pin the server to an IP, host[:port] or base URL")
    ovr.add_argument("address", help="Example: 192.168.29.2 or 192.168.29.2:5001")
    ovr.set_defaults(func=cmd_override)

    clr = subparsers.add_parser("clear", help="Drop the manual server and the cached endpoint")
    clr.set_defaults(func=cmd_clear)

    rst = subparsers.add_parser("reset", help="Clear everything, including known hosts")
    rst.set_defaults(func=cmd_reset)

    tst = subparsers.add_parser("test", help="Health-check one address")
    tst.add_argument("address", help="IP, host[:port] or base URL")
    tst.set_defaults(func=cmd_test)

    inf = subparsers.add_parser("info", help="Show device network info and stored state")
    inf.set_defaults(func=cmd_info)

    cnd = subparsers.add_parser("candidates", help="List candidates in probe order")
    cnd.add_argument("--device-ip", help="Pretend the device has this IP")
    cnd.add_argument("--limit", type=int, help="Show at most this many")
    cnd.set_defaults(func=cmd_candidates)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            args.func(args)
        except ValueError as e:
            raise SystemExit(f"Configuration error: {e}")
        return

    parser.print_help()


if __name__ == "__main__":
    main()
