from __future__ import annotations

from dataclasses import dataclass, field

from eth_account import Account

from pricewatch_bot.config import BotConfig
from pricewatch_bot.errors import ConfigurationError


def derivation_path(wallet_index: int) -> str:
    if wallet_index < 1:
        raise ConfigurationError("walletid must be >= 1")
    return f"m/44'/60'/0'/0/{wallet_index - 1}"


@dataclass(frozen=True)
class TradingWallet:
    address: str
    private_key: str = field(repr=False)


def load_wallet(config: BotConfig) -> TradingWallet:
    if config.private_key and config.mnemonic:
        raise ConfigurationError("Only one of [pkey], [mnemonic] must be supplied")
    if not config.private_key and not config.mnemonic:
        raise ConfigurationError("At least one of [pkey], [mnemonic] must be supplied")

    if config.mnemonic:
        path = derivation_path(config.wallet_index)
        Account.enable_unaudited_hdwallet_features()
        try:
            account = Account.from_mnemonic(config.mnemonic, account_path=path)
        except Exception as exc:
            raise ConfigurationError(f"Unable to derive wallet from mnemonic at {path}") from exc
    else:
        try:
            account = Account.from_key(config.private_key)
        except Exception as exc:
            raise ConfigurationError("Private key is not a valid secp256k1 key") from exc

    return TradingWallet(address=account.address, private_key="0x" + bytes(account.key).hex())
