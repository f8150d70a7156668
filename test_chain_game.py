"""
Tests for the chain game orchestrator.

Covers the period lifecycle, the conservation and pipeline properties over
whole runs, the classic scenarios (equilibrium, bullwhip, stockout) and the
fallback paths for failing, malformed and slow decision policies.
"""

import threading
import time

import pytest

from chain_game.engine.game import ChainGame, GamePhase, Severity
from chain_game.engine.policies import (
    BacklogChasingPolicy,
    ConstantPolicy,
    DecisionPolicy,
    DemandMatchingPolicy,
    HumanPolicy,
    OrderUpToPolicy,
    PolicyDecision,
    StermanPolicy,
)
from chain_game.exceptions import (
    ConfigurationError,
    GameCompleteError,
    InvalidOrderError,
    MissingDecisionError,
)
from chain_game.variants import beer_game_config, default_policies, get_variant, list_variants

BEER = ["retailer", "wholesaler", "distributor", "manufacturer"]


def beer_config(schedule=None, lead_times=None, **overrides):
    data = {"demand": {"mode": "schedule", "schedule": {"units": schedule or [4]}}}
    if lead_times is not None:
        order_delay, shipping_delay, production_delay = lead_times
        data["lead_times"] = {
            "order_delay": order_delay,
            "shipping_delay": shipping_delay,
            "production_delay": production_delay,
        }
    data.update(overrides)
    return beer_game_config(**data)


def single_echelon_config(**overrides):
    data = {
        "max_periods": 1,
        "echelons": [{"name": "shop", "role": "Shop", "initial_inventory": 0}],
        "demand": {"schedule": {"units": [100]}},
    }
    data.update(overrides)
    return data


class FailingPolicy(DecisionPolicy):
    def decide(self, state):
        raise ConnectionError("remote reasoning unavailable")


class MalformedPolicy(DecisionPolicy):
    def decide(self, state):
        return {"quantity": "twelve"}


class BlockingPolicy(DecisionPolicy):
    """Never answers until released"""

    def __init__(self, release: threading.Event):
        super().__init__()
        self.release = release

    def decide(self, state):
        self.release.wait(5.0)
        return PolicyDecision(99, "too late")


# ----------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------
def test_period_lifecycle_and_completion():
    config = beer_config(max_periods=3)
    game = ChainGame(config, default_policies(config, "demand"))

    assert game.phase == GamePhase.AWAITING_DECISIONS
    assert game.current_period == 1

    result = game.advance_period()
    assert result.period == 1
    assert result.phase == GamePhase.AWAITING_DECISIONS
    assert game.current_period == 2
    assert [entry.echelon for entry in result.entries] == BEER

    game.advance_period()
    result = game.advance_period()
    assert result.phase == GamePhase.COMPLETE
    assert game.is_complete()
    assert game.current_period == 3

    with pytest.raises(GameCompleteError):
        game.advance_period()


def test_results_only_after_completion():
    config = beer_config(max_periods=2)
    game = ChainGame(config, default_policies(config))
    with pytest.raises(ValueError):
        game.get_results()
    report = game.run()
    assert report.periods_played == 2


def test_history_is_read_only_and_append_only():
    config = beer_config(max_periods=4)
    game = ChainGame(config, default_policies(config))
    game.advance_period()
    first = game.history
    game.advance_period()

    assert game.history[: len(first)] == first
    assert len(game.history) == 2 * len(BEER)
    with pytest.raises(TypeError):
        first[0].inventory["units"] = 0
    with pytest.raises(AttributeError):
        first[0].cost = 0.0


def test_snapshot_reflects_latest_settlement():
    config = beer_config(max_periods=5)
    game = ChainGame(config, {name: ConstantPolicy(6) for name in BEER})
    game.advance_period()

    snapshot = game.snapshot()
    assert snapshot.period == 2
    assert snapshot.phase == GamePhase.AWAITING_DECISIONS
    assert snapshot.echelons["retailer"].last_order_placed == {"units": 6}
    assert snapshot.echelons["retailer"].last_rationale == {"units": "Fixed order of 6"}
    assert snapshot.total_cost == game.total_cost
    assert len(snapshot.history) == len(BEER)


def test_reset_restarts_the_game():
    config = beer_config(max_periods=3)
    policies = {name: StermanPolicy() for name in BEER}
    game = ChainGame(config, policies)
    first = game.run()

    game.reset()
    assert game.current_period == 1
    assert game.history == ()
    second = game.run()
    assert second.total_cost == first.total_cost


# ----------------------------------------------------------------------
# Properties over whole runs
# ----------------------------------------------------------------------
@pytest.mark.parametrize("variant", list_variants())
@pytest.mark.parametrize("kind", ["demand", "backlog", "orderupto", "sterman"])
def test_conservation_and_non_negativity(variant, kind):
    config = get_variant(variant)
    game = ChainGame(config, default_policies(config, kind))
    previous_total = 0.0

    while not game.is_complete():
        result = game.advance_period()
        for s in result.settlements:
            for k in s.inventory:
                assert s.inventory[k] >= 0
                assert s.inventory[k] + s.consumed[k] == s.prior_inventory[k] + s.arrivals[k]
            for k in s.backlog:
                assert s.backlog[k] >= 0
                assert s.backlog[k] + s.fulfilled[k] == s.owed_incoming[k] + s.prior_backlog[k]
        # running cost never decreases
        assert result.total_cost >= previous_total
        previous_total = result.total_cost

    for queue in game.ledger.queues():
        assert game.ledger.released_total(queue) + game.ledger.pending_total(queue) == game.ledger.scheduled_total(queue)
        for entry, period in game.ledger.released(queue):
            assert entry.arrival_period == period


def test_shipments_equal_downstream_arrivals():
    config = beer_config(schedule=[4, 4, 4, 4, 8], max_periods=12)
    game = ChainGame(config, default_policies(config, "backlog"))
    game.run()

    shipped = {(e.period, e.echelon): e.quantity_shipped["units"] for e in game.history}
    for entry in game.history:
        if entry.echelon == "retailer" and entry.period > 2:
            assert entry.arriving_supply["units"] == shipped[(entry.period - 2, "wholesaler")]


# ----------------------------------------------------------------------
# Scenarios
# ----------------------------------------------------------------------
def test_equilibrium_start_stays_in_steady_state():
    config = beer_config(schedule=[4])
    game = ChainGame(config, {name: ConstantPolicy(4) for name in BEER})
    report = game.run()

    for entry in game.history:
        assert entry.inventory == {"units": 12}
        assert entry.backlog == {"units": 0}
        assert entry.quantity_shipped == {"units": 4}
    assert report.average_inventory == 12
    assert report.average_backlog == 0
    assert report.total_cost == pytest.approx(20 * 4 * 12 * 0.5)
    assert not [m for m in game.messages if m.severity is Severity.STOCKOUT]


def two_stage_config(lead_times):
    return beer_config(
        schedule=[4, 4, 4, 4, 8],
        lead_times=lead_times,
        echelons=[
            {"name": "retailer", "role": "Retailer", "suppliers": {"units": "factory"}},
            {"name": "factory", "role": "Factory"},
        ],
    )


def _order_amplitude(config, policy_factory):
    upstream = config.echelons[-1].name
    game = ChainGame(config, {e.name: policy_factory() for e in config.echelons})
    game.run()
    orders = [e.order_placed["units"] for e in game.history if e.echelon == upstream]
    return max(orders) - min(orders)


def test_single_step_shock_amplification_shrinks_with_lead_times():
    demand_jump = 8 - 4
    amplitudes = [
        _order_amplitude(two_stage_config(lead_times), OrderUpToPolicy)
        for lead_times in [(1, 2, 2), (1, 1, 1), (0, 0, 0)]
    ]

    assert amplitudes[1] == 36
    assert amplitudes[2] == 16
    assert amplitudes[0] > amplitudes[1] > amplitudes[2] > demand_jump


@pytest.mark.parametrize("lead_times", [(1, 2, 2), (1, 1, 1), (0, 0, 0)])
def test_pass_through_ordering_carries_the_step_unchanged(lead_times):
    config = beer_config(schedule=[4, 4, 4, 4, 8], lead_times=lead_times)
    assert _order_amplitude(config, DemandMatchingPolicy) == 8 - 4


def test_bullwhip_ratio_reported():
    config = beer_config(schedule=[4, 4, 4, 4, 8])
    game = ChainGame(config, {name: DemandMatchingPolicy(backlog_fraction=1.0) for name in BEER})
    report = game.run()
    assert report.bullwhip_ratio > 1.0


def test_stockout_scenario():
    game = ChainGame(single_echelon_config(), {"shop": ConstantPolicy(0)})
    result = game.advance_period()

    settlement = result.settlements[0]
    assert settlement.shipped == {"units": 0}
    assert settlement.backlog == {"units": 100}
    assert settlement.inventory == {"units": 0}
    stockouts = [m for m in result.messages if m.severity is Severity.STOCKOUT]
    assert len(stockouts) == 1
    assert stockouts[0].echelon == "shop"
    assert game.get_results().service_level == 0.0


def test_combined_pool_shortfall_allocation():
    config = {
        "max_periods": 1,
        "lead_times": {"order_delay": 0, "shipping_delay": 1, "production_delay": 1},
        "echelons": [
            {
                "name": "dc",
                "stock": ["beef", "fish"],
                "suppliers": {"beef": "protein", "fish": "protein"},
                "initial_inventory": 0,
            },
            {
                "name": "protein",
                "stock": ["protein"],
                "serves": {"beef": "protein", "fish": "protein"},
                "initial_inventory": 50,
            },
        ],
        "demand": {"schedule": {"beef": [0], "fish": [0]}},
    }
    policies = {"dc": HumanPolicy(), "protein": ConstantPolicy(0)}
    game = ChainGame(config, policies)
    result = game.advance_period({"dc": {"beef": 60, "fish": 20}})

    protein = result.settlements[1]
    assert protein.shipped == {"beef": 60 * 50 // 80, "fish": 20 * 50 // 80}
    assert protein.backlog == {"protein": 80 - 37 - 12}
    partial = [m for m in result.messages if m.echelon == "protein"]
    assert [m.severity for m in partial] == [Severity.STOCKOUT]


# ----------------------------------------------------------------------
# Manual decisions
# ----------------------------------------------------------------------
def test_human_echelon_requires_decision():
    config = beer_config(max_periods=3)
    policies = default_policies(config)
    policies["retailer"] = HumanPolicy()
    game = ChainGame(config, policies)

    with pytest.raises(MissingDecisionError):
        game.advance_period()
    assert game.current_period == 1
    assert game.history == ()

    result = game.advance_period({"retailer": 7})
    assert result.entries[0].order_placed == {"units": 7}
    assert result.entries[0].rationale == {"units": "Manual order entry"}


@pytest.mark.parametrize("bad", [-1, "abc", "2.5", 10_001])
def test_invalid_manual_orders_are_rejected_before_any_change(bad):
    config = beer_config(max_periods=3, order_cap=10_000)
    policies = default_policies(config)
    policies["retailer"] = HumanPolicy()
    game = ChainGame(config, policies)

    with pytest.raises(InvalidOrderError):
        game.advance_period({"retailer": bad})
    assert game.current_period == 1
    assert game.history == ()


def test_manual_order_overrides_policy():
    config = beer_config(max_periods=2)
    game = ChainGame(config, default_policies(config))
    result = game.advance_period({"manufacturer": "15"})
    assert result.decisions[("manufacturer", "units")].order == 15


def test_multi_kind_echelon_needs_per_kind_orders():
    config = get_variant("fast_food")
    game = ChainGame(config, default_policies(config))
    with pytest.raises(MissingDecisionError):
        game.advance_period({"dc": 100})
    with pytest.raises(MissingDecisionError):
        game.advance_period({"dc": {"cheese": 5}})


# ----------------------------------------------------------------------
# Fallbacks
# ----------------------------------------------------------------------
@pytest.mark.parametrize("concurrent", [True, False])
@pytest.mark.parametrize("policy_cls", [FailingPolicy, MalformedPolicy])
def test_failed_decisions_fall_back(concurrent, policy_cls):
    config = beer_config(max_periods=3)
    policies = default_policies(config, "demand")
    policies["wholesaler"] = policy_cls()
    game = ChainGame(
        config, policies, fallback_policy=ConstantPolicy(5), concurrent_decisions=concurrent
    )
    report = game.run()

    wholesaler = [e for e in game.history if e.echelon == "wholesaler"]
    assert all(e.degraded for e in wholesaler)
    assert all(e.order_placed == {"units": 5} for e in wholesaler)
    assert all(e.rationale["units"].startswith("[fallback:") for e in wholesaler)
    warnings = [m for m in game.messages if m.severity is Severity.WARNING and m.echelon == "wholesaler"]
    assert len(warnings) >= 3
    assert report.degraded_decisions == 3


@pytest.mark.parametrize("concurrent", [True, False])
@pytest.mark.parametrize("others_human", [False, True])
def test_slow_decision_times_out_to_fallback(concurrent, others_human):
    release = threading.Event()
    config = beer_config(max_periods=1)
    policies = default_policies(config, "demand")
    manual = {}
    if others_human:
        # leaves a single policy to query
        for name in ("retailer", "wholesaler", "manufacturer"):
            policies[name] = HumanPolicy()
            manual[name] = 4
    policies["distributor"] = BlockingPolicy(release)
    game = ChainGame(
        config,
        policies,
        fallback_policy=BacklogChasingPolicy(),
        decision_timeout=0.2,
        concurrent_decisions=concurrent,
    )

    started = time.monotonic()
    try:
        result = game.advance_period(manual)
        elapsed = time.monotonic() - started
    finally:
        release.set()
        game.close()

    assert elapsed < 2.0
    decision = result.decisions[("distributor", "units")]
    assert decision.degraded
    assert decision.order == 4
    assert "no decision within" in decision.rationale
    assert result.phase == GamePhase.COMPLETE


def test_close_releases_decision_workers():
    config = beer_config(max_periods=2)
    game = ChainGame(config, default_policies(config, "demand"))
    game.advance_period()
    assert game._executor is not None

    game.close()
    assert game._executor is None
    # a closed game starts fresh workers if played again
    assert game.advance_period().phase == GamePhase.COMPLETE
    game.close()


# ----------------------------------------------------------------------
# Configuration errors
# ----------------------------------------------------------------------
@pytest.mark.parametrize("overrides", [
    {"max_periods": 0},
    {"holding_cost_rate": -0.5},
    {"backlog_cost_rate": -1},
    {"lead_times": {"order_delay": -1}},
    {"echelons": []},
    {"echelons": [{"name": "shop", "suppliers": {"units": "ghost"}}]},
    {"echelons": [{"name": "shop", "initial_inventory": -3}]},
    {"echelons": [{"name": "shop"}, {"name": "shop"}]},
    {"echelons": [{"name": "shop"}, {"name": "orphan"}]},
    {"demand": {"schedule": {"widgets": [4]}}},
])
def test_invalid_configuration_refuses_to_start(overrides):
    with pytest.raises(ConfigurationError):
        ChainGame(single_echelon_config(**overrides), {"shop": ConstantPolicy()})


def test_supplier_must_be_upstream():
    config = {
        "echelons": [
            {"name": "factory"},
            {"name": "shop", "suppliers": {"units": "factory"}},
        ],
        "demand": {"schedule": {"units": [4]}},
    }
    with pytest.raises(ConfigurationError):
        ChainGame(config, {"factory": ConstantPolicy(), "shop": ConstantPolicy()})


def test_policies_must_cover_the_chain():
    config = beer_config()
    with pytest.raises(ConfigurationError):
        ChainGame(config, {"retailer": ConstantPolicy()})
    with pytest.raises(ConfigurationError):
        ChainGame(config, {**default_policies(config), "ghost": ConstantPolicy()})
    with pytest.raises(ConfigurationError):
        ChainGame(config, default_policies(config), decision_timeout=0)
