from __future__ import annotations

from collections import deque
from decimal import Decimal
import logging
from typing import Any, Iterable
import uuid

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from pricewatch_bot.config import BotConfig
from pricewatch_bot.errors import (
    ConfirmationFailure,
    SubmissionError,
    TradeSkipped,
    VenueQueryError,
)
from pricewatch_bot.models import (
    Action,
    ActionOutcome,
    ActionResult,
    ConfirmationStatus,
    PendingAction,
    TradeSize,
    TransactionHandle,
    utc_now,
)
from pricewatch_bot.pricing import to_base_units
from pricewatch_bot.sizing import TradeSizer
from pricewatch_bot.storage import Storage
from pricewatch_bot.wallet import TradingWallet

LOGGER = logging.getLogger("pricewatch_bot")

ETHER_DECIMALS = 18

EXCHANGE_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "id", "type": "uint256"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "trade",
        "outputs": [{"internalType": "bool", "name": "success", "type": "bool"}],
        "stateMutability": "payable",
        "type": "function",
    }
]

ERC20_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "address", "name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "spender", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class BaseExecutor:
    def preflight(self) -> None:
        return

    def submit_trade(self, trade: TradeSize) -> TransactionHandle:
        raise NotImplementedError

    def await_confirmation(self, handle: TransactionHandle) -> ConfirmationStatus:
        raise NotImplementedError


class PaperExecutor(BaseExecutor):
    def __init__(self, config: BotConfig) -> None:
        self.config = config
        self.submitted: list[TradeSize] = []

    def submit_trade(self, trade: TradeSize) -> TransactionHandle:
        self.submitted.append(trade)
        handle = TransactionHandle(tx_hash=f"paper-{uuid.uuid4().hex[:12]}", blockchain=trade.strategy.blockchain)
        LOGGER.info(
            "paper_trade strategy=%s action=%s tokens=%s ether=%s order=%s tx=%s",
            trade.strategy.label,
            trade.strategy.action.value,
            trade.token_amount,
            trade.ether_amount,
            trade.order.order_tx,
            handle.tx_hash,
        )
        return handle

    def await_confirmation(self, handle: TransactionHandle) -> ConfirmationStatus:
        return ConfirmationStatus.CONFIRMED


class LiveExecutor(BaseExecutor):
    def __init__(self, config: BotConfig, wallet: TradingWallet) -> None:
        self.config = config
        self.wallet = wallet
        self._w3_by_chain: dict[str, Web3] = {}

    @staticmethod
    def _normalize_address(address: str) -> str:
        return str(address or "").strip().lower()

    @staticmethod
    def _receipt_status(receipt: Any) -> int:
        if receipt is None:
            return 0
        raw = receipt.get("status") if isinstance(receipt, dict) else getattr(receipt, "status", None)
        if raw is None:
            return 0
        if isinstance(raw, str):
            return int(raw, 16) if raw.startswith("0x") else int(raw)
        return int(raw)

    def _web3(self, blockchain: str) -> Web3:
        chain = blockchain.upper()
        w3 = self._w3_by_chain.get(chain)
        if w3 is not None:
            return w3
        network = self.config.network_for(chain)
        provider = Web3.HTTPProvider(
            network.rpc_url,
            request_kwargs={"timeout": max(5.0, self.config.api_timeout_seconds)},
        )
        w3 = Web3(provider)
        self._w3_by_chain[chain] = w3
        return w3

    def preflight(self) -> None:
        signer = Account.from_key(self.wallet.private_key).address
        if self._normalize_address(signer) != self._normalize_address(self.wallet.address):
            raise SubmissionError("signer mismatch with trading wallet address")
        LOGGER.info("live_auth signer=%s", signer)

    def _send_function_tx(self, blockchain: str, fn: Any, value_wei: int = 0) -> str:
        network = self.config.network_for(blockchain)
        w3 = self._web3(blockchain)
        signer = self.wallet.address
        nonce = int(w3.eth.get_transaction_count(signer, "pending"))
        gas_price = max(1, int(w3.eth.gas_price))
        tx = fn.build_transaction(
            {
                "from": signer,
                "nonce": nonce,
                "chainId": int(network.chain_id),
                "gasPrice": gas_price,
                "value": int(value_wei),
            }
        )
        gas_limit = int(tx.get("gas", 0) or 0)
        if gas_limit <= 0:
            gas_limit = int(w3.eth.estimate_gas(tx))
        tx["gas"] = max(21_000, int(gas_limit * self.config.gas_limit_multiplier))

        signed = Account.sign_transaction(tx, self.wallet.private_key)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise SubmissionError("unable to access signed raw transaction")
        tx_hash = w3.eth.send_raw_transaction(raw_tx)
        return Web3.to_hex(tx_hash)

    def _ensure_token_allowance(self, trade: TradeSize, exchange: str, amount_raw: int) -> None:
        blockchain = trade.strategy.blockchain
        w3 = self._web3(blockchain)
        token = w3.eth.contract(address=Web3.to_checksum_address(trade.strategy.token), abi=ERC20_ABI)
        owner = Web3.to_checksum_address(self.wallet.address)
        current = int(token.functions.allowance(owner, exchange).call())
        if current >= amount_raw:
            return
        tx_hash = self._send_function_tx(blockchain, token.functions.approve(exchange, amount_raw))
        LOGGER.info("approve_sent token=%s spender=%s amount=%s tx=%s", trade.strategy.token, exchange, amount_raw, tx_hash)
        status = self.await_confirmation(TransactionHandle(tx_hash=tx_hash, blockchain=blockchain))
        if status != ConfirmationStatus.CONFIRMED:
            raise SubmissionError(f"token approval {tx_hash} reverted")

    def submit_trade(self, trade: TradeSize) -> TransactionHandle:
        order = trade.order
        if not order.contract:
            raise SubmissionError(f"order {order.order_tx} has no exchange contract")
        if order.order_id is None:
            raise SubmissionError(f"order {order.order_tx} has no venue order id")
        blockchain = trade.strategy.blockchain
        amount_raw = to_base_units(trade.token_amount, trade.decimals)
        if amount_raw <= 0:
            raise SubmissionError("token amount rounds to zero base units")

        try:
            exchange = Web3.to_checksum_address(order.contract)
            contract = self._web3(blockchain).eth.contract(address=exchange, abi=EXCHANGE_ABI)
            value_wei = 0
            if trade.strategy.action == Action.BUY:
                value_wei = to_base_units(trade.ether_amount, ETHER_DECIMALS)
            else:
                self._ensure_token_allowance(trade, exchange, amount_raw)
            tx_hash = self._send_function_tx(
                blockchain,
                contract.functions.trade(int(order.order_id), amount_raw),
                value_wei=value_wei,
            )
        except (SubmissionError, ConfirmationFailure):
            raise
        except Exception as exc:
            raise SubmissionError(f"trade submission failed for order {order.order_tx}: {exc}") from exc
        return TransactionHandle(tx_hash=tx_hash, blockchain=blockchain)

    def await_confirmation(self, handle: TransactionHandle) -> ConfirmationStatus:
        w3 = self._web3(handle.blockchain)
        try:
            receipt = w3.eth.wait_for_transaction_receipt(
                handle.tx_hash,
                timeout=self.config.confirmation_timeout_seconds,
            )
        except TimeExhausted as exc:
            raise ConfirmationFailure(
                f"tx {handle.tx_hash} not mined within {self.config.confirmation_timeout_seconds:.0f}s"
            ) from exc
        except Exception as exc:
            raise ConfirmationFailure(f"unable to read receipt for tx {handle.tx_hash}: {exc}") from exc
        if self._receipt_status(receipt) == 1:
            return ConfirmationStatus.CONFIRMED
        return ConfirmationStatus.REVERTED


class ExecutionPipeline:
    """Drains pending actions strictly one after another; one failure never stops the rest."""

    def __init__(
        self,
        sizer: TradeSizer,
        executor: BaseExecutor,
        storage: Storage | None = None,
        mode: str = "paper",
    ) -> None:
        self.sizer = sizer
        self.executor = executor
        self.storage = storage
        self.mode = mode

    def run(self, actions: Iterable[PendingAction]) -> list[ActionResult]:
        queue: deque[PendingAction] = deque(actions)
        results: list[ActionResult] = []
        while queue:
            action = queue.popleft()
            result = self._execute_one(action)
            results.append(result)
            self._record(result)
        return results

    def _execute_one(self, action: PendingAction) -> ActionResult:
        strategy = action.strategy
        started = utc_now()
        size: TradeSize | None = None
        handle: TransactionHandle | None = None

        def _result(outcome: ActionOutcome, reason: str = "") -> ActionResult:
            return ActionResult(
                strategy=strategy,
                outcome=outcome,
                order_tx=action.order_tx,
                token_amount=size.token_amount if size is not None else Decimal(0),
                ether_amount=size.ether_amount if size is not None else Decimal(0),
                tx_hash=handle.tx_hash if handle is not None else "",
                reason=reason,
                started_at=started,
                finished_at=utc_now(),
            )

        try:
            action.consume()
            size = self.sizer.size(action)
            handle = self.executor.submit_trade(size)
            LOGGER.info(
                "Attempting to %s %s tokens of %s tx=%s",
                strategy.action.value,
                size.token_amount,
                strategy.label,
                handle.tx_hash,
            )
            status = self.executor.await_confirmation(handle)
        except TradeSkipped as exc:
            LOGGER.info("%s. Skipping...", exc)
            return _result(exc.outcome, str(exc))
        except (VenueQueryError, SubmissionError, ConfirmationFailure) as exc:
            LOGGER.error("action_failed strategy=%s kind=%s error=%s", strategy.label, type(exc).__name__, exc)
            return _result(ActionOutcome.FAILED, str(exc))
        except Exception as exc:
            LOGGER.exception("action_failed strategy=%s unexpected error", strategy.label)
            return _result(ActionOutcome.FAILED, f"{type(exc).__name__}: {exc}")

        if status != ConfirmationStatus.CONFIRMED:
            LOGGER.error("trade_reverted strategy=%s tx=%s", strategy.label, handle.tx_hash)
            return _result(ActionOutcome.FAILED, "transaction reverted")

        LOGGER.info(
            "trade_confirmed strategy=%s action=%s tokens=%s ether=%s tx=%s",
            strategy.label,
            strategy.action.value,
            size.token_amount,
            size.ether_amount,
            handle.tx_hash,
        )
        return _result(ActionOutcome.FILLED)

    def _record(self, result: ActionResult) -> None:
        if self.storage is None:
            return
        try:
            self.storage.record_action_result(result, self.mode)
        except Exception as exc:
            LOGGER.warning("record_action_failed strategy=%s error=%s", result.strategy.label, exc)
