from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
import sqlite3
from typing import Any

from pricewatch_bot.models import ActionOutcome, ActionResult


class Storage:
    def __init__(self, database_path: str) -> None:
        self.path = Path(database_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # The pipeline writes from the loop thread only; reports open their own Storage.
        self.conn = sqlite3.connect(self.path)
        self.conn.row_factory = sqlite3.Row
        self._create_schema()

    def _create_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS action_results (
              ts TEXT NOT NULL,
              blockchain TEXT NOT NULL,
              token TEXT NOT NULL,
              action TEXT NOT NULL,
              outcome TEXT NOT NULL,
              order_tx TEXT NOT NULL,
              token_amount TEXT NOT NULL,
              ether_amount TEXT NOT NULL,
              tx_hash TEXT NOT NULL,
              reason TEXT NOT NULL,
              mode TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_action_results_ts ON action_results (ts);
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def record_action_result(self, result: ActionResult, mode: str) -> None:
        strategy = result.strategy
        self.conn.execute(
            """
            INSERT INTO action_results (
              ts, blockchain, token, action, outcome, order_tx,
              token_amount, ether_amount, tx_hash, reason, mode
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                result.finished_at.astimezone(timezone.utc).isoformat(),
                strategy.blockchain,
                strategy.token,
                strategy.action.value,
                result.outcome.value,
                result.order_tx,
                str(result.token_amount),
                str(result.ether_amount),
                result.tx_hash,
                result.reason,
                mode,
            ),
        )
        self.conn.commit()

    def report(self, window_hours: int) -> dict[str, Any]:
        cutoff = datetime.now(tz=timezone.utc) - timedelta(hours=window_hours)
        rows = self.conn.execute(
            """
            SELECT blockchain, token, action, outcome, token_amount, ether_amount, mode
            FROM action_results
            WHERE ts >= ?
            ORDER BY ts ASC
            """,
            (cutoff.isoformat(),),
        ).fetchall()

        per_strategy: dict[tuple[str, str, str], dict[str, Any]] = {}
        for row in rows:
            key = (str(row["blockchain"]), str(row["token"]), str(row["action"]))
            metric = per_strategy.setdefault(
                key,
                {
                    "blockchain": key[0],
                    "token": key[1],
                    "action": key[2],
                    "attempts": 0,
                    "outcomes": {outcome.value: 0 for outcome in ActionOutcome},
                    "filled_tokens": Decimal(0),
                    "filled_ether": Decimal(0),
                },
            )
            metric["attempts"] += 1
            outcome = str(row["outcome"])
            metric["outcomes"][outcome] = metric["outcomes"].get(outcome, 0) + 1
            if outcome == ActionOutcome.FILLED.value:
                metric["filled_tokens"] += Decimal(str(row["token_amount"]))
                metric["filled_ether"] += Decimal(str(row["ether_amount"]))

        strategies = []
        for metric in per_strategy.values():
            metric["filled_tokens"] = str(metric["filled_tokens"])
            metric["filled_ether"] = str(metric["filled_ether"])
            strategies.append(metric)

        return {
            "window_hours": window_hours,
            "since": cutoff.isoformat(),
            "actions": len(rows),
            "strategies": strategies,
        }
