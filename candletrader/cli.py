"""Entry-point for the candletrader command-line."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from dotenv import load_dotenv

from candletrader import __version__
from candletrader.core.config import SystemConfig, load_config
from candletrader.core.errors import ConfigError
from candletrader.core.logging import LoggingContext

log = logging.getLogger("candletrader.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="candletrader", description="Single-symbol candlestick trading engine")
    parser.add_argument(
        "--config-dir",
        default=None,
        help="Directory holding the *.csv configuration files (default: ./config)",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the configuration and exit without trading",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _describe(config: SystemConfig) -> str:
    providers = ", ".join(sorted(config.providers)) or "none"
    return f"symbol={config.symbol} mode={config.trading_mode.mode} providers={providers}"


def cmd_check(config: SystemConfig) -> int:
    print(f"READY {_describe(config)}")
    return 0


def cmd_run(config: SystemConfig) -> int:
    from candletrader.services.runtime.supervisor import Supervisor

    logging_ctx = LoggingContext.for_run(config.logging)
    logging_ctx.install()
    log.info("cli.starting", extra={"run_dir": str(logging_ctx.run_dir), "summary": _describe(config)})
    try:
        supervisor = Supervisor(config, logging_ctx=logging_ctx)
    except ConfigError as exc:
        log.error("cli.config_invalid", extra={"error": str(exc), "key": exc.key})
        logging_ctx.close()
        return 1
    return supervisor.run()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv(override=False)
    try:
        config = load_config(args.config_dir)
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 1
    if args.check:
        return cmd_check(config)
    return cmd_run(config)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
