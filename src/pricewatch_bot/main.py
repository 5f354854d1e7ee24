from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
import time
from collections import Counter
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Sequence

from pricewatch_bot.clients_saturn import SaturnClient
from pricewatch_bot.config import BotConfig, load_config, load_strategies, validate_config
from pricewatch_bot.detector import OpportunityDetector
from pricewatch_bot.errors import ConfigurationError, PricewatchError
from pricewatch_bot.execution import BaseExecutor, ExecutionPipeline, LiveExecutor, PaperExecutor
from pricewatch_bot.models import ActionResult, StrategyConfig
from pricewatch_bot.sizing import TradeSizer
from pricewatch_bot.storage import Storage
from pricewatch_bot.volume import VolumeAccountant
from pricewatch_bot.wallet import TradingWallet, load_wallet

LOGGER = logging.getLogger("pricewatch_bot")
VERSION = "1.0.0"


class BotRuntime:
    def __init__(
        self,
        config: BotConfig,
        wallet: TradingWallet,
        strategies: Sequence[StrategyConfig],
        *,
        client: SaturnClient | None = None,
        executor: BaseExecutor | None = None,
        storage: Storage | None = None,
    ) -> None:
        self.config = config
        self.wallet = wallet
        self.strategies = tuple(strategies)
        self.client = client or SaturnClient(config.api_url, timeout_seconds=config.api_timeout_seconds)
        if storage is None and config.database_path:
            storage = Storage(config.database_path)
        self.storage = storage

        self.executor: BaseExecutor
        if executor is not None:
            self.executor = executor
        elif config.live_mode:
            self.executor = LiveExecutor(config, wallet)
        else:
            self.executor = PaperExecutor(config)

        self.detector = OpportunityDetector(self.client, max_workers=config.max_detect_workers)
        self.accountant = VolumeAccountant(self.client)
        self.sizer = TradeSizer(self.client, self.accountant, wallet.address)
        self.pipeline = ExecutionPipeline(self.sizer, self.executor, storage=self.storage, mode=config.mode)

        self._stop_event = threading.Event()
        self._cycle_counter = 0

    @property
    def cycle_count(self) -> int:
        return self._cycle_counter

    def stop(self) -> None:
        self._stop_event.set()

    def preflight(self) -> None:
        self.executor.preflight()

    def run(self, max_cycles: int | None = None) -> None:
        while not self._stop_event.is_set():
            self.run_cycle()
            if max_cycles is not None and self._cycle_counter >= max_cycles:
                return
            # Fixed delay after the cycle finishes; cycles never overlap.
            self._stop_event.wait(self.config.poll_delay_seconds)

    def run_cycle(self) -> list[ActionResult]:
        self._cycle_counter += 1
        started = time.time()
        pending_count = 0
        results: list[ActionResult] = []
        try:
            pending = self.detector.detect_all(self.strategies)
            pending_count = len(pending)
            if pending:
                results = self.pipeline.run(pending)
        except Exception:
            LOGGER.exception("cycle=%s failed", self._cycle_counter)
        finally:
            outcomes = Counter(result.outcome.value for result in results)
            LOGGER.info(
                "cycle=%s strategies=%s pending=%s filled=%s skipped=%s failed=%s elapsed=%.2fs",
                self._cycle_counter,
                len(self.strategies),
                pending_count,
                outcomes.get("filled", 0),
                sum(1 for result in results if result.skipped),
                outcomes.get("failed", 0),
                time.time() - started,
            )
        return results

    def close(self) -> None:
        if self.storage is not None:
            self.storage.close()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("urllib3", "web3"):
        logging.getLogger(noisy).setLevel(logging.ERROR)


def _apply_cli_overrides(config: BotConfig, args: argparse.Namespace) -> BotConfig:
    overrides: dict[str, object] = {}
    if getattr(args, "mode", None):
        overrides["mode"] = args.mode.lower()
    if getattr(args, "pkey", None):
        overrides["private_key"] = args.pkey.strip()
        overrides["mnemonic"] = ""
    if getattr(args, "mnemonic", None):
        overrides["mnemonic"] = args.mnemonic.strip()
        if not getattr(args, "pkey", None):
            overrides["private_key"] = ""
    if getattr(args, "walletid", None) is not None:
        overrides["wallet_index"] = int(args.walletid)
    if getattr(args, "json", None):
        overrides["strategy_file"] = args.json
    if getattr(args, "delay", None) is not None:
        overrides["poll_delay_seconds"] = float(args.delay)
    return replace(config, **overrides) if overrides else config


def _log_strategies(strategies: Sequence[StrategyConfig]) -> None:
    for index, strategy in enumerate(strategies):
        LOGGER.info(
            "strategy=%s chain=%s token=%s action=%s price=%s hourly_ether_limit=%s",
            index,
            strategy.blockchain,
            strategy.token,
            strategy.action.value,
            strategy.price_threshold,
            strategy.hourly_ether_limit,
        )


def _install_signal_handlers(runtime: BotRuntime) -> None:
    received: list[int] = []

    def _on_signal(signum: int, _frame: object) -> None:
        received.append(signum)
        if len(received) > 1:
            LOGGER.error("signal=%s received twice, exiting without waiting for the cycle", signum)
            raise SystemExit(130)
        LOGGER.warning("signal=%s received, stopping after the current cycle (repeat to force exit)", signum)
        runtime.stop()

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _on_signal)


def _run_command(args: argparse.Namespace) -> int:
    config = _apply_cli_overrides(load_config(), args)
    _setup_logging(config.log_level)
    try:
        validate_config(config)
        wallet = load_wallet(config)
        strategies = load_strategies(config.strategy_file, config)
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 2

    runtime = BotRuntime(config, wallet, strategies)
    try:
        runtime.preflight()
    except PricewatchError as exc:
        LOGGER.error("preflight_failed mode=%s error=%s", config.mode, exc)
        runtime.close()
        return 2

    LOGGER.info("Loading pricewatch-bot v%s mode=%s delay=%.0fs", VERSION, config.mode, config.poll_delay_seconds)
    LOGGER.info("Trading address: %s", wallet.address)
    _log_strategies(strategies)
    _install_signal_handlers(runtime)
    try:
        runtime.run()
    finally:
        runtime.close()
    LOGGER.info("Stopped after %s cycles", runtime.cycle_count)
    return 0


def _report_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    if not Path(config.database_path).exists():
        LOGGER.error("No database at %s", config.database_path)
        return 2
    storage = Storage(config.database_path)
    try:
        print(json.dumps(storage.report(args.window), indent=2))
    finally:
        storage.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pricewatch_bot",
        description="Watch a price of a given token on Saturn Network and auto buy/sell.",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the price watch loop")
    run.add_argument("--mode", choices=("paper", "live"), default=None)
    run.add_argument("-p", "--pkey", default=None, help="Private key of the wallet to use for trading")
    run.add_argument(
        "-m",
        "--mnemonic",
        default=None,
        help="Mnemonic (i.e. from Saturn Wallet) of the wallet to use for trading",
    )
    run.add_argument(
        "-i",
        "--walletid",
        type=int,
        default=None,
        help="If using a mnemonic, choose which wallet to use. Default is Account 2 of Saturn Wallet / MetaMask.",
    )
    run.add_argument("-j", "--json", default=None, help="Trading bot config file")
    run.add_argument("-d", "--delay", type=float, default=None, help="Polling delay in seconds")
    run.set_defaults(func=_run_command)

    report = sub.add_parser("report", help="Print trade outcome summary from SQLite")
    report.add_argument("--window", type=int, default=24, help="Window in hours")
    report.set_defaults(func=_report_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


def main() -> None:
    raise SystemExit(cli())


if __name__ == "__main__":
    main()
