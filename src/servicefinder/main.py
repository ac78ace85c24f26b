from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import time
from typing import List, Optional, TextIO

from .config.config_parser import load_config
from .config.logging_config import init_logging
from .errors import ServiceFinderError
from .finder import ServiceFinder


def render(finder: ServiceFinder, mode: str = "service") -> str:
    """
    Brief: Format the finder's current state as plain text.

    Inputs:
      - finder: ServiceFinder to read.
      - mode: 'service' groups source addresses under each instance name;
        'ip' groups instance names under each source address.

    Outputs:
      - str: one outer entry per line, inner entries indented two spaces.

    Example:
        >>> render(finder, "ip")  # doctest: +SKIP
        '10.0.0.5\\n  foo'
    """
    lines: List[str] = []
    if mode == "ip":
        for ip in finder.ips():
            lines.append(ip)
            lines.extend(f"  {name}" for name in finder.services(ip))
        return "\n".join(lines)

    by_name = {}
    for inst in finder.instances():
        by_name.setdefault(inst.name, []).append(inst)
    for name in finder.services():
        lines.append(name)
        for inst in by_name.get(name, []):
            where = f"{inst.target or '?'}:{inst.port if inst.port is not None else '?'}"
            lines.append(f"  {inst.address or '-'} ({where})")
        lines.extend(f"  from {ip}" for ip in finder.ips(name))
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None, out: TextIO = sys.stdout) -> int:
    """
    Main entry point for the service browser.
    Parses arguments, loads configuration, starts a ServiceFinder and prints
    the discovered services whenever they change.

    Args:
        argv: Command-line arguments.
        out: Stream the service listing is written to.

    Returns:
        An exit code: 0 on normal shutdown, 1 on configuration or startup
        failure.

    Example use:
        CLI:
            PYTHONPATH=src python -m servicefinder.main --service-type _http._tcp.local
    """
    parser = argparse.ArgumentParser(description="Browse mDNS / DNS-SD services")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--service-type", default=None, help="Service type to browse")
    parser.add_argument(
        "--no-expire",
        action="store_true",
        help="Keep instances after their TTL runs out",
    )
    parser.add_argument(
        "--browse-interval",
        type=float,
        default=None,
        help="Seconds between re-broadcast queries (0 disables)",
    )
    parser.add_argument(
        "--mode",
        choices=("service", "ip"),
        default="service",
        help="Group output by service name or by address",
    )
    parser.add_argument(
        "--once",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Browse for SECONDS, print the result and exit",
    )
    parser.add_argument(
        "-v",
        "--var",
        action="append",
        default=[],
        help="Config variable override, KEY=YAML (repeatable)",
    )
    args = parser.parse_args(argv)

    try:
        app_cfg = load_config(args.config, cli_vars=args.var)
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    overrides = {}
    if args.service_type:
        overrides["service_type"] = args.service_type.strip().rstrip(".")
    if args.no_expire:
        overrides["expire_records"] = False
    if args.browse_interval is not None:
        overrides["browse_interval_s"] = max(0.0, args.browse_interval)
    finder_cfg = app_cfg.finder.copy(update=overrides)

    init_logging(app_cfg.logging, service_type=finder_cfg.service_type)
    logger = logging.getLogger("servicefinder.main")

    shutdown_event = threading.Event()
    print_lock = threading.Lock()

    def _on_change(error: Optional[ServiceFinderError] = None) -> None:
        if error is not None:
            logger.warning("%s", error)
            return
        if args.once is not None:
            return
        with print_lock:
            print(render(finder, args.mode), file=out)
            print("", file=out, flush=True)

    finder = ServiceFinder(_on_change, config=finder_cfg, autostart=False)

    def _request_shutdown(signum, _frame) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _request_shutdown)
        except ValueError:  # pragma: no cover - not on the main thread
            logger.debug("Could not install handler for %s", sig)

    try:
        finder.start().result()
    except ServiceFinderError as exc:
        logger.error("Could not start service discovery: %s", exc)
        finder.shutdown()
        return 1

    interval = finder_cfg.browse_interval_s
    deadline = time.monotonic() + args.once if args.once is not None else None
    try:
        while not shutdown_event.is_set():
            wait = interval if interval > 0 else 1.0
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                wait = min(wait, remaining)
            if shutdown_event.wait(wait):
                break
            if interval > 0 and (deadline is None or time.monotonic() < deadline):
                finder.browse_services()
    finally:
        finder.shutdown()

    if args.once is not None:
        print(render(finder, args.mode), file=out, flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
