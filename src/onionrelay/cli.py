"""Command-line interface for onionrelay."""

from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from .__about__ import __version__
from .config import Config
from .robustness import OnionError, setup_logging
from .server import serve_forever
from .simulation import build_local_network


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None, help="Path to config YAML")
    p.add_argument(
        "--loglevel",
        default=None,
        help="Logging level (DEBUG/INFO/WARNING/ERROR/CRITICAL)",
    )
    p.add_argument("--logfile", default=None, help="Optional log file path")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="onionrelay", description="Onion routing overlay")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("version", help="Print the version and exit")

    launch = sub.add_parser("launch", help="Serve a registry, relays and users over HTTP")
    _add_common(launch)
    launch.add_argument("--relays", type=int, default=10, help="Number of relays")
    launch.add_argument("--users", type=int, default=2, help="Number of users")

    simulate = sub.add_parser("simulate", help="Send one message through an in-process overlay")
    _add_common(simulate)
    simulate.add_argument("--relays", type=int, default=5, help="Number of relays")
    simulate.add_argument("--message", default="hello", help="Plaintext to send")
    simulate.add_argument("--seed", type=int, default=None, help="Seed for path selection")
    return p


def _load(args) -> Config:
    config = Config(args.config)
    settings = config.settings
    setup_logging(args.loglevel or settings.logging.level, args.logfile or settings.logging.file)
    return config


async def _simulate(config: Config, relays: int, message: str, seed: Optional[int]) -> int:
    settings = config.settings
    local = build_local_network(
        relays,
        user_count=2,
        network=settings.network,
        seed=seed if seed is not None else settings.circuit.seed,
    )
    sender, recipient = local.users[0], local.users[1]
    circuit = await sender.send_message(message, recipient.user_id)
    print(f"circuit: {circuit}")
    print(f"delivered: {recipient.state.last_received_message!r}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "version":
        print(__version__)
        return 0

    try:
        config = _load(args)
        if args.command == "launch":
            asyncio.run(serve_forever(config.settings, args.relays, args.users))
            return 0
        return asyncio.run(_simulate(config, args.relays, args.message, args.seed))
    except OnionError as e:
        print(f"error: {e}")
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
