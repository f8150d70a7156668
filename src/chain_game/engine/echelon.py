"""
Echelon state machine.

Resolves one node of the chain for one period: receive supply, fill the
customer's order plus outstanding backlog from what is available, ship,
and accrue holding and backlog cost. Settlement is computed once per
period per stock kind, so inventory and backlog of the same kind can
never both be drawn against the same demand.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from ..config import EchelonConfig, LeadTimes
from .pipeline import Flow, PipelineEntry, PipelineLedger, QueueKey


def _frozen(mapping: Mapping[str, int]) -> Mapping[str, int]:
    return MappingProxyType(dict(mapping))


def fulfil(prior_inventory: int, arriving_supply: int, incoming_order: int, prior_backlog: int) -> Tuple[int, int, int]:
    """
    Single resource kind settlement.

    Returns (shipped, new_inventory, new_backlog).
    """
    available = prior_inventory + arriving_supply
    total_owed = incoming_order + prior_backlog
    shipped = min(available, total_owed)
    return shipped, available - shipped, total_owed - shipped


def allocate_pooled(
    available: int,
    orders: Mapping[str, int],
    prior_backlog: int,
) -> Tuple[Dict[str, int], int, int]:
    """
    Settle a combined pool that fills several downstream kinds.

    The pool does not track backlog per kind. Its service-level ratio
    ``deliverable / total_owed`` is applied to each kind's order for this
    period and floored, so no kind is sent more than it just ordered. Units
    not shipped (floor loss, and whatever would have cleared the pooled
    backlog) stay in inventory and in backlog.

    Returns (shipped per kind, new_inventory, new_backlog).
    """
    total_owed = sum(orders.values()) + prior_backlog
    deliverable = min(available, total_owed)

    shipped = {
        kind: (order * deliverable) // total_owed if total_owed else 0
        for kind, order in orders.items()
    }
    total_shipped = sum(shipped.values())
    return shipped, available - total_shipped, total_owed - total_shipped


def assemble(
    available: Mapping[str, int],
    components: Mapping[str, int],
    incoming_order: int,
    prior_backlog: int,
) -> Tuple[int, Dict[str, int], int]:
    """
    Build finished units limited by complete component kits.

    Returns (built, new component inventory, new backlog).
    """
    kits = min(available[kind] // per_unit for kind, per_unit in components.items())
    total_owed = incoming_order + prior_backlog
    built = min(kits, total_owed)
    inventory = {kind: available[kind] - built * components[kind] for kind in available}
    return built, inventory, total_owed - built


@dataclass(frozen=True)
class Settlement:
    """Outcome of resolving one echelon for one period"""
    period: int
    echelon: str
    arrivals: Mapping[str, int]  # per stock kind
    incoming_orders: Mapping[str, int]  # per served kind
    shipped: Mapping[str, int]  # per served kind
    consumed: Mapping[str, int]  # stock units drawn per stock kind
    prior_inventory: Mapping[str, int]
    inventory: Mapping[str, int]
    owed_incoming: Mapping[str, int]  # new demand per backlog kind
    fulfilled: Mapping[str, int]  # demand met per backlog kind
    prior_backlog: Mapping[str, int]
    backlog: Mapping[str, int]
    holding_cost: float
    backlog_cost: float

    @property
    def cost(self) -> float:
        return self.holding_cost + self.backlog_cost

    @property
    def total_shipped(self) -> int:
        return sum(self.shipped.values())


class Echelon:
    """
    Mutable state of one echelon plus its transition function.

    The orchestrator calls ``place_orders`` for every echelon before any
    ``settle`` of the same period, then settles echelons upstream first.
    Policies only ever see read-only views of this state.
    """

    def __init__(
        self,
        config: EchelonConfig,
        lead_times: LeadTimes,
        holding_cost_rate: float,
        backlog_cost_rate: float,
        order_cap: Optional[int] = None,
        downstream: Optional[str] = None,
        warmup_rate: Optional[int] = None,
    ):
        self.config = config
        self.name = config.name
        self.role = config.label
        self.lead_times = lead_times
        self.holding_cost_rate = holding_cost_rate
        self.backlog_cost_rate = backlog_cost_rate
        self.order_cap = order_cap
        self.downstream = downstream
        self.market_facing = downstream is None

        self.stock: List[str] = list(config.stock)
        self.serve_map = config.serve_map()
        self.served_kinds = config.served_kinds()
        self.assembly = config.assembly

        self.inventory: Dict[str, int] = config.initial_inventory_map()
        self.backlog: Dict[str, int] = config.initial_backlog_map()

        rate = warmup_rate or 0
        self.last_order_received: Dict[str, int] = {kind: rate for kind in self.served_kinds}
        self.last_shipped: Dict[str, int] = {kind: rate for kind in self.served_kinds}
        self.last_order_placed: Dict[str, int] = {kind: rate for kind in self.stock}
        self.last_rationale: Dict[str, str] = {kind: "" for kind in self.stock}
        self.total_cost = 0.0

    # ------------------------------------------------------------------
    # Queue addressing
    # ------------------------------------------------------------------
    def supply_queue(self, kind: str) -> QueueKey:
        return QueueKey(self.name, Flow.SUPPLY, kind)

    def orders_queue(self, kind: str) -> QueueKey:
        return QueueKey(self.name, Flow.ORDERS, kind)

    def order_target(self, kind: str) -> Tuple[QueueKey, int]:
        """Queue and delay an order for stock ``kind`` is placed on"""
        supplier = self.config.suppliers.get(kind)
        if supplier is None:
            return self.supply_queue(kind), self.lead_times.production_delay
        return QueueKey(supplier, Flow.ORDERS, kind), self.lead_times.order_delay

    # ------------------------------------------------------------------
    # Policy-facing views
    # ------------------------------------------------------------------
    def demand_signal(self, kind: str, served: Mapping[str, int]) -> int:
        """Express per-served-kind quantities in units of stock ``kind``"""
        if self.assembly is not None:
            return served.get(self.assembly.product, 0) * self.assembly.components[kind]
        return sum(qty for served_kind, qty in served.items() if self.serve_map.get(served_kind) == kind)

    def backlog_signal(self, kind: str) -> int:
        if self.assembly is not None:
            return self.backlog[self.assembly.product] * self.assembly.components[kind]
        return self.backlog.get(kind, 0)

    def in_transit(self, ledger: PipelineLedger, kind: str) -> Tuple[PipelineEntry, ...]:
        return ledger.in_transit(self.supply_queue(kind))

    # ------------------------------------------------------------------
    # Transition
    # ------------------------------------------------------------------
    def place_orders(self, period: int, ledger: PipelineLedger, orders: Mapping[str, int]) -> None:
        """Schedule this period's orders upstream (or into production)"""
        for kind in self.stock:
            quantity = int(orders.get(kind, 0))
            queue, delay = self.order_target(kind)
            ledger.schedule(queue, period + delay, quantity, scheduled_period=period)
            self.last_order_placed[kind] = quantity

    def settle(
        self,
        period: int,
        ledger: PipelineLedger,
        market_demand: Optional[Mapping[str, int]] = None,
    ) -> Settlement:
        """Resolve arrivals, fulfilment, shipments and cost for ``period``"""
        arrivals = {kind: ledger.collect_due(self.supply_queue(kind), period) for kind in self.stock}
        if self.market_facing:
            demand = market_demand or {}
            incoming = {kind: int(demand.get(kind, 0)) for kind in self.served_kinds}
        else:
            incoming = {kind: ledger.collect_due(self.orders_queue(kind), period) for kind in self.served_kinds}

        prior_inventory = dict(self.inventory)
        prior_backlog = dict(self.backlog)
        available = {kind: prior_inventory[kind] + arrivals[kind] for kind in self.stock}

        inventory: Dict[str, int] = {}
        backlog: Dict[str, int] = {}
        shipped: Dict[str, int] = {}
        consumed: Dict[str, int] = {}
        owed_incoming: Dict[str, int] = {}
        fulfilled: Dict[str, int] = {}

        if self.assembly is not None:
            product = self.assembly.product
            built, inventory, backlog[product] = assemble(
                available, self.assembly.components, incoming[product], prior_backlog[product]
            )
            shipped[product] = built
            owed_incoming[product] = incoming[product]
            fulfilled[product] = built
            consumed = {kind: built * per_unit for kind, per_unit in self.assembly.components.items()}
        else:
            for kind in self.stock:
                group = {s: incoming[s] for s in self.served_kinds if self.serve_map[s] == kind}
                owed_incoming[kind] = sum(group.values())
                if len(group) > 1:
                    allocation, inventory[kind], backlog[kind] = allocate_pooled(
                        available[kind], group, prior_backlog[kind]
                    )
                    shipped.update(allocation)
                    consumed[kind] = sum(allocation.values())
                else:
                    sent, inventory[kind], backlog[kind] = fulfil(
                        prior_inventory[kind], arrivals[kind], owed_incoming[kind], prior_backlog[kind]
                    )
                    for served_kind in group:
                        shipped[served_kind] = sent
                    consumed[kind] = sent
                fulfilled[kind] = consumed[kind]

        if self.downstream is not None:
            for kind, quantity in shipped.items():
                ledger.schedule(
                    QueueKey(self.downstream, Flow.SUPPLY, kind),
                    period + self.lead_times.shipping_delay,
                    quantity,
                    scheduled_period=period,
                )

        holding_cost = sum(inventory.values()) * self.holding_cost_rate
        backlog_cost = sum(backlog.values()) * self.backlog_cost_rate

        self.inventory = inventory
        self.backlog = backlog
        self.last_order_received = dict(incoming)
        self.last_shipped = dict(shipped)
        self.total_cost += holding_cost + backlog_cost

        return Settlement(
            period=period,
            echelon=self.name,
            arrivals=_frozen(arrivals),
            incoming_orders=_frozen(incoming),
            shipped=_frozen(shipped),
            consumed=_frozen(consumed),
            prior_inventory=_frozen(prior_inventory),
            inventory=_frozen(inventory),
            owed_incoming=_frozen(owed_incoming),
            fulfilled=_frozen(fulfilled),
            prior_backlog=_frozen(prior_backlog),
            backlog=_frozen(backlog),
            holding_cost=holding_cost,
            backlog_cost=backlog_cost,
        )
