"""
Tests for the echelon state machine: single, combined-pool and assembly settlement.
"""

from chain_game.config import EchelonConfig, LeadTimes
from chain_game.engine.echelon import Echelon, allocate_pooled, assemble, fulfil
from chain_game.engine.pipeline import Flow, PipelineLedger, QueueKey


def test_fulfil_ships_what_is_available():
    assert fulfil(prior_inventory=12, arriving_supply=4, incoming_order=8, prior_backlog=0) == (8, 8, 0)
    assert fulfil(prior_inventory=2, arriving_supply=1, incoming_order=5, prior_backlog=4) == (3, 0, 6)


def test_fulfil_stockout():
    shipped, inventory, backlog = fulfil(0, 0, 100, 0)
    assert (shipped, inventory, backlog) == (0, 0, 100)


def test_pooled_allocation_floors_each_share():
    shipped, inventory, backlog = allocate_pooled(50, {"beef": 60, "fish": 20}, 0)

    assert shipped == {"beef": 37, "fish": 12}
    # floor loss stays on hand and stays owed
    assert inventory == 1
    assert backlog == 31
    assert inventory + sum(shipped.values()) == 50
    assert backlog + sum(shipped.values()) == 80


def test_pooled_allocation_with_plenty_ships_current_orders():
    shipped, inventory, backlog = allocate_pooled(500, {"beef": 60, "fish": 20}, 10)

    assert shipped == {"beef": 60, "fish": 20}
    assert inventory == 500 - 80
    # pooled backlog is not attributed to a kind, so it stays owed
    assert backlog == 10


def test_pooled_allocation_never_ships_more_than_ordered():
    shipped, inventory, backlog = allocate_pooled(200, {"beef": 0, "fish": 50}, 100)

    assert shipped == {"beef": 0, "fish": 50}
    assert inventory == 150
    assert backlog == 100


def test_pooled_allocation_shortfall_with_backlog():
    shipped, inventory, backlog = allocate_pooled(40, {"beef": 30, "fish": 10}, 40)

    # service level 40 / 80 applied to each order
    assert shipped == {"beef": 15, "fish": 5}
    assert inventory == 20
    assert backlog == 60
    assert inventory + sum(shipped.values()) == 40
    assert backlog + sum(shipped.values()) == 80


def test_pooled_allocation_backlog_only_ships_nothing():
    shipped, inventory, backlog = allocate_pooled(9, {"beef": 0, "fish": 0}, 20)
    assert shipped == {"beef": 0, "fish": 0}
    assert inventory == 9
    assert backlog == 20


def test_assembly_limited_by_scarcest_component():
    built, inventory, backlog = assemble({"cowos": 300, "hbm": 500}, {"cowos": 1, "hbm": 1}, 400, 50)
    assert built == 300
    assert inventory == {"cowos": 0, "hbm": 200}
    assert backlog == 150


def test_assembly_with_multi_unit_components():
    built, inventory, backlog = assemble({"die": 7, "board": 10}, {"die": 2, "board": 1}, 2, 0)
    assert built == 2
    assert inventory == {"die": 3, "board": 8}
    assert backlog == 0


def _echelon(**overrides):
    config = EchelonConfig(name="wholesaler", suppliers={"units": "distributor"}, **overrides)
    return Echelon(
        config,
        lead_times=LeadTimes(order_delay=1, shipping_delay=2, production_delay=2),
        holding_cost_rate=0.5,
        backlog_cost_rate=1.0,
        downstream="retailer",
    )


def test_settle_collects_orders_and_schedules_shipment():
    ledger = PipelineLedger()
    echelon = _echelon()
    ledger.schedule(QueueKey("wholesaler", Flow.ORDERS, "units"), 1, 20)
    ledger.schedule(QueueKey("wholesaler", Flow.SUPPLY, "units"), 1, 3)

    settlement = echelon.settle(1, ledger)

    assert settlement.arrivals == {"units": 3}
    assert settlement.incoming_orders == {"units": 20}
    assert settlement.shipped == {"units": 15}
    assert settlement.inventory == {"units": 0}
    assert settlement.backlog == {"units": 5}
    assert settlement.cost == 5.0
    assert ledger.peek_due(QueueKey("retailer", Flow.SUPPLY, "units"), 3) == 15
    assert echelon.last_order_received == {"units": 20}
    assert echelon.total_cost == 5.0


def test_place_orders_routes_to_supplier_or_production():
    ledger = PipelineLedger()
    wholesaler = _echelon()
    wholesaler.place_orders(4, ledger, {"units": 7})
    assert ledger.peek_due(QueueKey("distributor", Flow.ORDERS, "units"), 5) == 7

    factory = Echelon(
        EchelonConfig(name="factory"),
        lead_times=LeadTimes(order_delay=1, shipping_delay=2, production_delay=3),
        holding_cost_rate=0.5,
        backlog_cost_rate=1.0,
        downstream="wholesaler",
    )
    factory.place_orders(4, ledger, {"units": 9})
    assert ledger.peek_due(QueueKey("factory", Flow.SUPPLY, "units"), 7) == 9
    assert factory.last_order_placed == {"units": 9}


def test_settlement_never_goes_negative():
    ledger = PipelineLedger()
    echelon = _echelon(initial_inventory=0, initial_backlog=3)
    for period in range(1, 6):
        ledger.schedule(QueueKey("wholesaler", Flow.ORDERS, "units"), period, period * 2)
        settlement = echelon.settle(period, ledger)
        assert settlement.inventory["units"] >= 0
        assert settlement.backlog["units"] >= 0
    assert echelon.backlog["units"] == 3 + sum(p * 2 for p in range(1, 6))


def test_market_facing_echelon_reads_demand():
    retailer = Echelon(
        EchelonConfig(name="retailer", suppliers={"units": "wholesaler"}),
        lead_times=LeadTimes(),
        holding_cost_rate=0.5,
        backlog_cost_rate=1.0,
    )
    settlement = retailer.settle(1, PipelineLedger(), {"units": 5})

    assert retailer.market_facing
    assert settlement.shipped == {"units": 5}
    assert settlement.inventory == {"units": 7}
    assert settlement.holding_cost == 3.5


def test_pooled_echelon_demand_signal_sums_served_kinds():
    protein = Echelon(
        EchelonConfig(name="protein", stock=["protein"], serves={"beef": "protein", "fish": "protein"}),
        lead_times=LeadTimes(),
        holding_cost_rate=0.5,
        backlog_cost_rate=5.0,
        downstream="dc",
    )
    assert protein.demand_signal("protein", {"beef": 30, "fish": 12}) == 42
