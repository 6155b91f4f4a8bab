import os
import sys
import tempfile

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradecore.execution.models import (
    CloseIntent,
    EnterIntent,
    EXIT_LABELS,
    FeeModel,
    PositionManagementPlan,
    ReduceIntent,
    SimulatedFill,
    SimulatedPosition,
    SlippageModel,
    TakeProfitInstruction,
    position_from_dict,
    position_to_dict,
)
from tradecore.utils.persistence import load_position, save_position

import unittest


def sample_position() -> SimulatedPosition:
    return SimulatedPosition(
        bot_id="bot-1",
        position_id="position-3",
        symbol="BTCUSDT",
        side="short",
        status="open",
        quantity=2.0,
        remaining_quantity=1.0,
        avg_entry_price=100.0,
        stop_price=100.0,
        realized_pnl=5.0,
        opened_at_ms=1_000,
        strategy_context={"reasons": ["breakout_short"]},
        entry_price=100.0,
        entry_fee=0.2,
        fills=[
            SimulatedFill(
                id="fill-7", order_id="order-7", position_id="position-3", bot_id="bot-1", reason="tp",
                side="short", time=2_000, price=95.0, quantity=1.0, gross_pnl=5.0, fee=0.0, net_pnl=5.0,
                label="TP1",
            )
        ],
        management=PositionManagementPlan(
            take_profits=[TakeProfitInstruction(id="tp1", label="TP1", price=95.0, size_fraction=0.5,
                                                move_stop_to_breakeven=True)],
            cooldown_bars=1,
        ),
    )


class TestModelValidation(unittest.TestCase):
    def test_intent_shape_checks(self) -> None:
        with self.assertRaises(ValueError):
            EnterIntent(side="sideways")
        with self.assertRaises(ValueError):
            EnterIntent(side="long", entry_type="limit")
        with self.assertRaises(ValueError):
            ReduceIntent(side="long", size_fraction=0.0)
        with self.assertRaises(ValueError):
            CloseIntent(side="flat")
        self.assertEqual(EnterIntent(side="long", entry_type="limit", limit_price=10.0).kind, "enter")

    def test_plan_and_cost_model_checks(self) -> None:
        with self.assertRaises(ValueError):
            TakeProfitInstruction(id="tp1", label="TP1", price=1.0, size_fraction=1.2)
        with self.assertRaises(ValueError):
            PositionManagementPlan(cooldown_bars=-1)
        with self.assertRaises(ValueError):
            SlippageModel(type="random-walk")
        with self.assertRaises(ValueError):
            FeeModel(type="tiered")

    def test_take_profit_ids_cannot_reuse_exit_labels(self) -> None:
        for reserved in EXIT_LABELS:
            with self.assertRaises(ValueError):
                TakeProfitInstruction(id=reserved, label="TP", price=1.0, size_fraction=0.5)
        self.assertEqual(TakeProfitInstruction(id="tp1", label="stop", price=1.0, size_fraction=0.5).id, "tp1")


class TestPositionCopies(unittest.TestCase):
    def test_clone_does_not_alias_containers(self) -> None:
        live = sample_position()
        snapshot = live.clone()

        live.fills.append(live.fills[0])
        live.strategy_context["reasons"] = []
        live.management.take_profits.clear()

        self.assertEqual(len(snapshot.fills), 1)
        self.assertEqual(snapshot.strategy_context, {"reasons": ["breakout_short"]})
        self.assertEqual(len(snapshot.management.take_profits), 1)

    def test_dict_round_trip(self) -> None:
        position = sample_position()
        self.assertEqual(position_from_dict(position_to_dict(position)), position)

    def test_save_and_load_position(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "state", "position.json")
            save_position(path, sample_position())
            self.assertEqual(load_position(path), sample_position())

            save_position(path, None)
            self.assertIsNone(load_position(path))
            self.assertIsNone(load_position(os.path.join(tmp, "missing.json")))


if __name__ == '__main__':
    unittest.main()
