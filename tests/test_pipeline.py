from __future__ import annotations

from decimal import Decimal
import tempfile
import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from pricewatch_bot.execution import ExecutionPipeline
from pricewatch_bot.models import Action, ActionOutcome
from pricewatch_bot.sizing import TradeSizer
from pricewatch_bot.storage import Storage
from pricewatch_bot.volume import VolumeAccountant
from tests.helpers import FIXED_NOW, WALLET, FakeVenue, RecordingExecutor, make_pending, make_strategy


def _token(n: int) -> str:
    return "0x" + f"{n:040x}"


def _pipeline(venue: FakeVenue, executor: RecordingExecutor, storage: Storage | None = None) -> ExecutionPipeline:
    sizer = TradeSizer(venue, VolumeAccountant(venue, now_fn=lambda: FIXED_NOW), WALLET)
    return ExecutionPipeline(sizer, executor, storage=storage, mode="paper")


class ExecutionPipelineTests(unittest.TestCase):
    def test_submit_and_confirm_strictly_alternate(self) -> None:
        events: list[tuple[str, str]] = []
        executor = RecordingExecutor(events)
        actions = [make_pending(make_strategy(Action.BUY, token=_token(i))) for i in range(5)]

        results = _pipeline(FakeVenue(), executor).run(actions)

        self.assertEqual([r.outcome for r in results], [ActionOutcome.FILLED] * 5)
        expected: list[tuple[str, str]] = []
        for i in range(5):
            expected += [("submit", _token(i)), ("confirm", _token(i))]
        self.assertEqual(events, expected)

    def test_results_keep_queue_order(self) -> None:
        actions = [make_pending(make_strategy(Action.BUY, token=_token(i))) for i in (3, 1, 2)]
        results = _pipeline(FakeVenue(), RecordingExecutor()).run(actions)
        self.assertEqual([r.strategy.token for r in results], [_token(3), _token(1), _token(2)])

    def test_filled_result_carries_trade_amounts(self) -> None:
        executor = RecordingExecutor()
        [result] = _pipeline(FakeVenue(ether_balance="2"), executor).run([make_pending(make_strategy())])
        self.assertTrue(result.filled)
        self.assertEqual(result.token_amount, Decimal("1111." + "1" * 18))
        self.assertEqual(result.tx_hash, "0xtx1")
        self.assertEqual(result.order_tx, "0xsellorder")
        self.assertEqual(executor.submitted[0].token_amount, result.token_amount)

    def test_submission_failure_does_not_block_remaining_actions(self) -> None:
        events: list[tuple[str, str]] = []
        executor = RecordingExecutor(events)
        executor.fail_submit_for.add(_token(1))
        actions = [make_pending(make_strategy(Action.BUY, token=_token(i))) for i in range(3)]

        with self.assertLogs("pricewatch_bot", level="ERROR") as logs:
            results = _pipeline(FakeVenue(), executor).run(actions)

        self.assertEqual(
            [r.outcome for r in results],
            [ActionOutcome.FILLED, ActionOutcome.FAILED, ActionOutcome.FILLED],
        )
        self.assertIn("rejected", results[1].reason)
        self.assertTrue(any("action_failed" in line for line in logs.output))
        self.assertEqual(events[-2:], [("submit", _token(2)), ("confirm", _token(2))])

    def test_reverted_transaction_is_failed(self) -> None:
        executor = RecordingExecutor()
        executor.revert_for.add(_token(0))
        actions = [make_pending(make_strategy(token=_token(i))) for i in range(2)]
        results = _pipeline(FakeVenue(), executor).run(actions)
        self.assertEqual(results[0].outcome, ActionOutcome.FAILED)
        self.assertEqual(results[0].reason, "transaction reverted")
        self.assertEqual(results[0].tx_hash, "0xtx1")
        self.assertEqual(results[1].outcome, ActionOutcome.FILLED)

    def test_venue_failure_during_sizing_is_failed(self) -> None:
        venue = FakeVenue()
        venue.failing.add("get_order_detail")
        executor = RecordingExecutor()
        results = _pipeline(venue, executor).run([make_pending(make_strategy())])
        self.assertEqual(results[0].outcome, ActionOutcome.FAILED)
        self.assertEqual(executor.submitted, [])

    def test_skips_are_reported_with_their_outcome(self) -> None:
        venue = FakeVenue(ether_balance="0")
        executor = RecordingExecutor()
        with self.assertLogs("pricewatch_bot", level="INFO") as logs:
            results = _pipeline(venue, executor).run([make_pending(make_strategy())])
        self.assertEqual(results[0].outcome, ActionOutcome.INSUFFICIENT_FUNDS)
        self.assertTrue(results[0].skipped)
        self.assertTrue(any("Skipping..." in line for line in logs.output))
        self.assertEqual(executor.events, [])

    def test_unexpected_error_is_contained(self) -> None:
        class _BrokenExecutor(RecordingExecutor):
            def submit_trade(self, trade):
                raise KeyError("boom")

        with self.assertLogs("pricewatch_bot", level="ERROR"):
            results = _pipeline(FakeVenue(), _BrokenExecutor()).run(
                [make_pending(make_strategy(token=_token(i))) for i in range(2)]
            )
        self.assertEqual([r.outcome for r in results], [ActionOutcome.FAILED] * 2)
        self.assertTrue(results[0].reason.startswith("KeyError"))

    def test_each_action_executes_at_most_once(self) -> None:
        executor = RecordingExecutor()
        action = make_pending(make_strategy())
        pipeline = _pipeline(FakeVenue(), executor)

        first = pipeline.run([action])
        with self.assertLogs("pricewatch_bot", level="ERROR"):
            second = pipeline.run([action])

        self.assertTrue(action.consumed)
        self.assertEqual(first[0].outcome, ActionOutcome.FILLED)
        self.assertEqual(second[0].outcome, ActionOutcome.FAILED)
        self.assertEqual(len(executor.submitted), 1)

    def test_no_actions_means_no_calls(self) -> None:
        venue = FakeVenue()
        executor = RecordingExecutor()
        self.assertEqual(_pipeline(venue, executor).run([]), [])
        self.assertEqual(venue.calls, [])
        self.assertEqual(executor.events, [])

    def test_results_are_recorded(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            storage = Storage(str(Path(tmp) / "bot.db"))
            try:
                executor = RecordingExecutor()
                executor.revert_for.add(_token(1))
                actions = [make_pending(make_strategy(token=_token(i))) for i in range(2)]
                _pipeline(FakeVenue(), executor, storage=storage).run(actions)
                report = storage.report(1)
            finally:
                storage.close()
        self.assertEqual(report["actions"], 2)
        outcomes = {row["token"]: row["outcomes"] for row in report["strategies"]}
        self.assertEqual(outcomes[_token(0)]["filled"], 1)
        self.assertEqual(outcomes[_token(1)]["failed"], 1)


if __name__ == "__main__":
    unittest.main()
