from __future__ import annotations

from dataclasses import dataclass
import json
import os
from pathlib import Path
from typing import Any

from pricewatch_bot.errors import ConfigurationError, InvalidStrategyError
from pricewatch_bot.models import Action, StrategyConfig, parse_decimal


@dataclass(frozen=True)
class ChainNetwork:
    name: str
    chain_id: int
    rpc_url: str


@dataclass(frozen=True)
class BotConfig:
    mode: str
    api_url: str
    api_timeout_seconds: float

    poll_delay_seconds: float
    max_detect_workers: int
    confirmation_timeout_seconds: float
    gas_limit_multiplier: float

    strategy_file: str
    database_path: str

    private_key: str
    mnemonic: str
    wallet_index: int

    networks: tuple[ChainNetwork, ...]

    log_level: str

    @property
    def live_mode(self) -> bool:
        return self.mode.lower() == "live"

    @property
    def paper_mode(self) -> bool:
        return not self.live_mode

    def network_for(self, blockchain: str) -> ChainNetwork:
        wanted = blockchain.strip().upper()
        for network in self.networks:
            if network.name == wanted:
                return network
        raise ConfigurationError(f"Unknown chain {blockchain!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def load_config() -> BotConfig:
    return BotConfig(
        mode=os.getenv("BOT_MODE", "paper").strip().lower(),
        api_url=os.getenv("SATURN_API_URL", "https://ticker.saturn.network/api/v2").rstrip("/"),
        api_timeout_seconds=10.0,
        poll_delay_seconds=_env_float("POLL_DELAY_SECONDS", 60.0),
        max_detect_workers=8,
        confirmation_timeout_seconds=_env_float("CONFIRMATION_TIMEOUT_SECONDS", 600.0),
        gas_limit_multiplier=1.20,
        strategy_file=os.getenv("STRATEGY_FILE", ""),
        database_path=os.getenv("BOT_DB_PATH", "data/pricewatch.db"),
        private_key=os.getenv("PRIVATE_KEY", "").strip(),
        mnemonic=os.getenv("MNEMONIC", "").strip(),
        # Account 2 of Saturn Wallet / MetaMask.
        wallet_index=_env_int("WALLET_ID", 2),
        networks=(
            ChainNetwork("ETC", 61, os.getenv("ETC_RPC_URL", "https://www.ethercluster.com/etc")),
            ChainNetwork("ETH", 1, os.getenv("ETH_RPC_URL", "https://cloudflare-eth.com")),
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )


def validate_config(config: BotConfig) -> None:
    if config.mode not in {"paper", "live"}:
        raise ConfigurationError(f"Unsupported mode {config.mode!r}")
    if config.poll_delay_seconds < 0:
        raise ConfigurationError("Polling delay must be >= 0")
    if config.private_key and config.mnemonic:
        raise ConfigurationError("Only one of [pkey], [mnemonic] must be supplied")
    if not config.private_key and not config.mnemonic:
        raise ConfigurationError("At least one of [pkey], [mnemonic] must be supplied")
    if not config.strategy_file:
        raise ConfigurationError("Must specify bot config .json file location")


def _row_value(row: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in row:
            return row[key]
    return None


def parse_strategy(row: Any, config: BotConfig, index: int = 0) -> StrategyConfig:
    if not isinstance(row, dict):
        raise InvalidStrategyError(f"strategy #{index} must be an object")

    token = str(row.get("token") or "").strip().lower()
    if not token:
        raise InvalidStrategyError(f"strategy #{index} is missing token")

    blockchain = str(row.get("blockchain") or "").strip().upper()
    try:
        config.network_for(blockchain)
    except ConfigurationError as exc:
        raise InvalidStrategyError(f"strategy #{index}: {exc}") from exc

    raw_action = str(row.get("action") or "").strip().lower()
    try:
        action = Action(raw_action)
    except ValueError as exc:
        raise InvalidStrategyError(f"strategy #{index}: unknown action {row.get('action')!r}") from exc

    price = parse_decimal(row.get("price"))
    if price is None or price <= 0:
        raise InvalidStrategyError(f"strategy #{index}: price must be a positive decimal")

    limit = parse_decimal(_row_value(row, "houretherlimit", "hourly_ether_limit"))
    if limit is None or limit < 0:
        raise InvalidStrategyError(f"strategy #{index}: houretherlimit must be a non-negative decimal")

    return StrategyConfig(
        token=token,
        blockchain=blockchain,
        action=action,
        price_threshold=price,
        hourly_ether_limit=limit,
    )


def load_strategies(path: str | Path, config: BotConfig) -> tuple[StrategyConfig, ...]:
    file_path = Path(path)
    try:
        payload = json.loads(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Strategy file not found: {file_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Strategy file is not valid JSON: {file_path}: {exc}") from exc

    if not isinstance(payload, list):
        raise ConfigurationError("Strategy file must contain a JSON array")
    return tuple(parse_strategy(row, config, index=i) for i, row in enumerate(payload))
