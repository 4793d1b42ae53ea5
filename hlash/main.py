#!/usr/bin/env python3
"""
hlash - Clash service with automatic subscription updates

Usage:
    hlash --run -u <url> -t 6h            # Run in the foreground
    hlash -s install --run -u <url> -t 6h # Install as a system service
    hlash -s status                       # start|stop|restart|uninstall|status

The installed service re-runs with the same flags (minus `-s install`).
"""

import argparse
import sys
from pathlib import Path

from hlash import __version__
from hlash.common import logging_setup
from hlash.common.config import (
    SERVICE_DESCRIPTION,
    SERVICE_NAME,
    ServiceDescriptor,
    Settings,
    parse_duration,
    service_arguments,
)
from hlash.services.system.controller import CONTROL_ACTIONS, ServiceController
from hlash.services.system.driver import new_driver
from hlash.services.system.program import ServiceProgram
from hlash.supervisor import Supervisor


def _duration(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}")
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def build_parser() -> argparse.ArgumentParser:
    actions = "\n".join(f"    {name:<10} {help_}" for name, help_ in CONTROL_ACTIONS.items())
    parser = argparse.ArgumentParser(
        prog="hlash",
        description="Clash service with automatic subscription updates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Service actions (--svc):\n{actions}",
    )

    parser.add_argument("--home", "-d", type=Path, default=None, help="data directory (default: current directory)")
    parser.add_argument("--secret", "-k", default="", help="external controller secret")
    parser.add_argument("--ctl", default="", help="external controller address")
    parser.add_argument("--ui", default="ui", help="external controller UI path")
    parser.add_argument("--subscribe", "-u", default="", help="subscription URL")
    parser.add_argument(
        "--subscribe-interval", "--subscribe_interval", "-t",
        dest="subscribe_interval", type=_duration, default=0.0,
        help="subscription refresh interval, e.g. 30m, 6h (default: off)",
    )
    parser.add_argument("--run", action="store_true", help="run the clash engine as well")
    parser.add_argument("--svc", "-s", default="run", help="service action (default: run)")
    parser.add_argument(
        "--mixed-port", "--mixedPort", "-p",
        dest="mixed_port", type=_port, default=0,
        help="force a single mixed proxy port",
    )
    parser.add_argument("--engine-bin", default="clash", help="clash-compatible engine binary")
    parser.add_argument("--health-port", type=_port, default=0, help="local status endpoint port (default: off)")
    parser.add_argument("--verbose", "-v", action="store_true", help="enable verbose (debug) logging")
    parser.add_argument("--version", action="version", version=f"hlash {__version__}")
    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    home = (args.home or Path.cwd()).expanduser().resolve()
    return Settings(
        home_dir=home,
        secret=args.secret,
        controller=args.ctl,
        ui=args.ui,
        subscribe_url=args.subscribe,
        subscribe_interval=args.subscribe_interval,
        run_engine=args.run,
        mixed_port=args.mixed_port,
        engine_bin=args.engine_bin,
        health_port=args.health_port,
    )


def build_descriptor(settings: Settings, action: str, argv: list[str]) -> ServiceDescriptor:
    arguments: tuple[str, ...] = ()
    if action == "install":
        # The unit runs from its own working directory; pin home as absolute
        rest = service_arguments(argv, drop=("--svc", "-s", "--home", "-d"))
        arguments = ("--home", str(settings.home_dir), *rest)
    return ServiceDescriptor(
        name=SERVICE_NAME,
        display_name=SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        working_directory=str(settings.home_dir),
        arguments=arguments,
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    if argv is None:
        argv = sys.argv[1:]

    args = build_parser().parse_args(argv)
    if args.verbose:
        logging_setup.configure(log_level="DEBUG", json_format=False)

    settings = build_settings(args)
    descriptor = build_descriptor(settings, args.svc, argv)

    supervisor = Supervisor(settings)
    program = ServiceProgram(run=supervisor.run, init=supervisor.preflight)
    controller = ServiceController(new_driver(descriptor), program)

    try:
        return controller.run_action(args.svc)
    except KeyboardInterrupt:
        print("\nStopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
