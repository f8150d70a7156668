"""
Core chain game orchestrator.

A game is a chain of echelons exchanging orders upstream and shipments
downstream under fixed lead times. Each period runs through three phases:

    AWAITING_DECISIONS -> RESOLVING -> SETTLED

and the game ends in COMPLETE once the horizon has been settled. The
history ledger of per-(period, echelon) entries is append-only and is the
only thing summaries and reports are computed from.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np

from ..config import ChainConfig, build_config
from ..exceptions import ConfigurationError, GameCompleteError, MissingDecisionError
from .demand import DemandGenerator
from .echelon import Echelon, Settlement
from .pipeline import Flow, PipelineLedger, QueueKey
from .policies import (
    BacklogChasingPolicy,
    DecisionPolicy,
    HumanPolicy,
    ObservableState,
    PolicyDecision,
    coerce_decision,
    degraded_decision,
    parse_order_input,
)

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 3

Decisions = Mapping[str, Union[int, Mapping[str, int]]]


class GamePhase(Enum):
    """Current phase of the game"""
    AWAITING_DECISIONS = "awaiting_decisions"
    RESOLVING = "resolving"
    SETTLED = "settled"
    COMPLETE = "complete"


class Severity(Enum):
    """Severity of a user-visible game message"""
    INFO = "info"
    WARNING = "warning"
    STOCKOUT = "stockout"


@dataclass(frozen=True)
class GameMessage:
    period: int
    severity: Severity
    text: str
    echelon: Optional[str] = None


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable record of one echelon after one settled period"""
    period: int
    echelon: str
    role: str
    inventory: Mapping[str, int]
    backlog: Mapping[str, int]
    incoming_order: Mapping[str, int]
    arriving_supply: Mapping[str, int]
    order_placed: Mapping[str, int]
    quantity_shipped: Mapping[str, int]
    cost: float
    rationale: Mapping[str, str]
    degraded: bool = False

    @property
    def total_inventory(self) -> int:
        return sum(self.inventory.values())

    @property
    def total_backlog(self) -> int:
        return sum(self.backlog.values())

    @property
    def total_order(self) -> int:
        return sum(self.order_placed.values())

    @property
    def total_shipped(self) -> int:
        return sum(self.quantity_shipped.values())

    def as_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "echelon": self.echelon,
            "role": self.role,
            "inventory": dict(self.inventory),
            "backlog": dict(self.backlog),
            "incoming_order": dict(self.incoming_order),
            "arriving_supply": dict(self.arriving_supply),
            "order_placed": dict(self.order_placed),
            "quantity_shipped": dict(self.quantity_shipped),
            "cost": self.cost,
        }


@dataclass(frozen=True)
class PeriodResult:
    """What happened in one call to ``advance_period``"""
    period: int
    demand: Mapping[str, int]
    decisions: Mapping[Tuple[str, str], PolicyDecision]
    settlements: Tuple[Settlement, ...]
    entries: Tuple[HistoryEntry, ...]
    messages: Tuple[GameMessage, ...]
    period_cost: float
    total_cost: float
    phase: GamePhase


@dataclass(frozen=True)
class EchelonView:
    """Read-only per-echelon state for the presentation layer"""
    name: str
    role: str
    inventory: Mapping[str, int]
    backlog: Mapping[str, int]
    last_order_received: Mapping[str, int]
    last_shipped: Mapping[str, int]
    last_order_placed: Mapping[str, int]
    last_rationale: Mapping[str, str]
    total_cost: float


@dataclass(frozen=True)
class ChainSnapshot:
    """Read-only view of the game after the latest settlement"""
    period: int
    phase: GamePhase
    echelons: Mapping[str, EchelonView]
    history: Tuple[HistoryEntry, ...]
    messages: Tuple[GameMessage, ...]
    total_cost: float
    current_demand: Mapping[str, int]


@dataclass(frozen=True)
class TerminationReport:
    """Final results of a completed game"""
    total_cost: float
    average_backlog: float
    average_inventory: float
    periods_played: int
    echelon_costs: Mapping[str, float]
    bullwhip_ratio: float
    service_level: float
    degraded_decisions: int

    def summary(self) -> Dict[str, Any]:
        """Get a summary of key metrics"""
        summary = {
            "total_cost": self.total_cost,
            "cost_per_period": self.total_cost / self.periods_played if self.periods_played else 0.0,
            "average_backlog": self.average_backlog,
            "average_inventory": self.average_inventory,
            "bullwhip_ratio": self.bullwhip_ratio,
            "service_level": self.service_level,
            "degraded_decisions": self.degraded_decisions,
        }
        for name, cost in self.echelon_costs.items():
            summary[f"{name}_cost"] = cost
        return summary


def _frozen(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


class ChainGame:
    """
    Multi-echelon supply chain game engine.

    Owns every piece of simulation state. The presentation layer drives it
    through ``advance_period`` and reads it through ``snapshot``; nothing
    else mutates it.
    """

    def __init__(
        self,
        config: Union[ChainConfig, Mapping[str, Any]],
        policies: Mapping[str, DecisionPolicy],
        fallback_policy: Optional[DecisionPolicy] = None,
        decision_timeout: float = 30.0,
        concurrent_decisions: bool = True,
        demand: Optional[DemandGenerator] = None,
    ):
        """
        Initialize a new chain game.

        Args:
            config: Chain configuration (validated here; invalid configs raise ConfigurationError)
            policies: Decision policy per echelon name
            fallback_policy: Deterministic policy used when a decision fails or times out
            decision_timeout: Seconds to wait for the decisions of a period (per call when sequential)
            concurrent_decisions: Query all policies at once rather than one after another
            demand: Custom demand generator (defaults to one built from the config)
        """
        self.config = build_config(config)

        names = [e.name for e in self.config.echelons]
        missing = [name for name in names if name not in policies]
        if missing:
            raise ConfigurationError(f"No decision policy for echelons: {missing}")
        unknown = sorted(set(policies) - set(names))
        if unknown:
            raise ConfigurationError(f"Policies given for unknown echelons: {unknown}")
        if decision_timeout <= 0:
            raise ConfigurationError("decision_timeout must be positive")

        self.policies: Dict[str, DecisionPolicy] = dict(policies)
        self.fallback_policy = fallback_policy or BacklogChasingPolicy()
        self.decision_timeout = decision_timeout
        self.concurrent_decisions = concurrent_decisions
        self.demand = demand or DemandGenerator(self.config.demand, self.config.max_periods)
        self._executor: Optional[ThreadPoolExecutor] = None

        self.reset()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def reset(self) -> None:
        """Discard all state and start again from period 1"""
        config = self.config
        self.ledger = PipelineLedger()
        self.echelons: Dict[str, Echelon] = {}
        for node in config.echelons:
            self.echelons[node.name] = Echelon(
                node,
                lead_times=config.lead_times_for(node),
                holding_cost_rate=config.holding_rate_for(node),
                backlog_cost_rate=config.backlog_rate_for(node),
                order_cap=config.order_cap_for(node),
                downstream=config.downstream_of(node.name),
                warmup_rate=config.warmup_rate,
            )
        self.chain: List[Echelon] = [self.echelons[node.name] for node in config.echelons]
        self.market = self.chain[0]

        self.current_period = 1
        self.phase = GamePhase.AWAITING_DECISIONS
        self.total_cost = 0.0
        self._history: List[HistoryEntry] = []
        self._messages: List[GameMessage] = []
        self._market_demand: List[Dict[str, int]] = []
        self.current_demand: Dict[str, int] = self.demand.demand_for(self.current_period)

        if config.warmup_rate is not None:
            self._seed_warmup(config.warmup_rate)

        for policy in self.policies.values():
            policy.reset()
        self.fallback_policy.reset()

    def _seed_warmup(self, rate: int) -> None:
        """Fill the first lead-time periods of every queue at the equilibrium rate"""
        start = self.current_period
        for echelon in self.chain:
            for kind in echelon.stock:
                supplier_name = echelon.config.suppliers.get(kind)
                if supplier_name is None:
                    delay = echelon.lead_times.production_delay
                    for period in range(start, start + delay):
                        self.ledger.schedule(echelon.supply_queue(kind), period, rate)
                    continue

                supplier = self.echelons[supplier_name]
                for period in range(start, start + echelon.lead_times.order_delay):
                    self.ledger.schedule(QueueKey(supplier_name, Flow.ORDERS, kind), period, rate)
                for period in range(start, start + supplier.lead_times.shipping_delay):
                    self.ledger.schedule(echelon.supply_queue(kind), period, rate)

    def close(self) -> None:
        """Release policy resources (e.g. HTTP sessions) and the decision workers"""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        for policy in self.policies.values():
            policy.close()
        self.fallback_policy.close()

    def is_complete(self) -> bool:
        """Check if the game has finished"""
        return self.phase == GamePhase.COMPLETE

    @property
    def history(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._history)

    @property
    def messages(self) -> Tuple[GameMessage, ...]:
        return tuple(self._messages)

    # ------------------------------------------------------------------
    # Period loop
    # ------------------------------------------------------------------
    def advance_period(self, decisions: Optional[Decisions] = None) -> PeriodResult:
        """
        Play one period.

        Args:
            decisions: Manual orders per echelon name, either an int (for an
                echelon ordering a single resource kind) or a mapping of
                resource kind to quantity. Required for echelons controlled
                by a HumanPolicy; overrides the policy for any other echelon.

        Returns:
            PeriodResult for the settled period
        """
        if self.phase == GamePhase.COMPLETE:
            raise GameCompleteError("Cannot step a completed game")

        period = self.current_period
        overrides = self._validate_decisions(decisions or {})

        chosen = self._collect_decisions(period, overrides)

        self.phase = GamePhase.RESOLVING
        for echelon in self.chain:
            echelon.place_orders(period, self.ledger, {kind: chosen[(echelon.name, kind)].order for kind in echelon.stock})
            for kind in echelon.stock:
                echelon.last_rationale[kind] = chosen[(echelon.name, kind)].rationale

        demand = dict(self.current_demand)
        settlements: Dict[str, Settlement] = {}
        for echelon in reversed(self.chain):
            market_demand = demand if echelon.market_facing else None
            settlements[echelon.name] = echelon.settle(period, self.ledger, market_demand)

        entries = []
        messages = []
        for echelon in self.chain:
            settlement = settlements[echelon.name]
            echelon_decisions = {kind: chosen[(echelon.name, kind)] for kind in echelon.stock}
            entry = HistoryEntry(
                period=period,
                echelon=echelon.name,
                role=echelon.role,
                inventory=settlement.inventory,
                backlog=settlement.backlog,
                incoming_order=settlement.incoming_orders,
                arriving_supply=settlement.arrivals,
                order_placed=_frozen({kind: d.order for kind, d in echelon_decisions.items()}),
                quantity_shipped=settlement.shipped,
                cost=settlement.cost,
                rationale=_frozen({kind: d.rationale for kind, d in echelon_decisions.items()}),
                degraded=any(d.degraded for d in echelon_decisions.values()),
            )
            entries.append(entry)
            messages.extend(self._describe(echelon, settlement, echelon_decisions))

        self._history.extend(entries)
        self._messages.extend(messages)
        self._market_demand.append(demand)

        self.phase = GamePhase.SETTLED
        period_cost = sum(s.cost for s in settlements.values())
        self.total_cost += period_cost
        logger.debug("Period %d settled: cost %.2f (total %.2f)", period, period_cost, self.total_cost)

        if period >= self.config.max_periods:
            self.phase = GamePhase.COMPLETE
        else:
            self.current_period = period + 1
            self.current_demand = self.demand.demand_for(self.current_period)
            self.phase = GamePhase.AWAITING_DECISIONS

        return PeriodResult(
            period=period,
            demand=_frozen(demand),
            decisions=_frozen(chosen),
            settlements=tuple(settlements[e.name] for e in self.chain),
            entries=tuple(entries),
            messages=tuple(messages),
            period_cost=period_cost,
            total_cost=self.total_cost,
            phase=self.phase,
        )

    def step(self) -> PeriodResult:
        """Play one period using only the configured policies"""
        return self.advance_period()

    def run(self) -> TerminationReport:
        """Play to the horizon and return the termination report"""
        while not self.is_complete():
            self.advance_period()
        return self.get_results()

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------
    def _validate_decisions(self, decisions: Decisions) -> Dict[Tuple[str, str], int]:
        """Check manual orders at the input boundary; nothing is mutated on failure"""
        overrides: Dict[Tuple[str, str], int] = {}
        for name, value in decisions.items():
            if name not in self.echelons:
                raise MissingDecisionError(f"Unknown echelon {name!r}")
            echelon = self.echelons[name]
            if isinstance(value, Mapping):
                per_kind = dict(value)
            elif len(echelon.stock) == 1:
                per_kind = {echelon.stock[0]: value}
            else:
                raise MissingDecisionError(
                    f"{name} orders {echelon.stock}; give a quantity per resource kind"
                )
            for kind, quantity in per_kind.items():
                if kind not in echelon.stock:
                    raise MissingDecisionError(f"{name} does not order {kind!r}")
                overrides[(name, kind)] = parse_order_input(quantity, echelon.order_cap)

        for echelon in self.chain:
            if isinstance(self.policies[echelon.name], HumanPolicy):
                absent = [kind for kind in echelon.stock if (echelon.name, kind) not in overrides]
                if absent:
                    raise MissingDecisionError(
                        f"Period {self.current_period}: no order entered for {echelon.name} ({', '.join(absent)})"
                    )
        return overrides

    def validate_order(self, echelon_name: str, value: Any) -> int:
        """Check one manual order against the echelon's order cap"""
        if echelon_name not in self.echelons:
            raise MissingDecisionError(f"Unknown echelon {echelon_name!r}")
        return parse_order_input(value, self.echelons[echelon_name].order_cap)

    def observe(self, echelon_name: str, kind: str) -> ObservableState:
        """Build the frozen state a policy sees for one (echelon, resource kind) stream"""
        echelon = self.echelons[echelon_name]
        customer_demand = None
        if echelon.market_facing:
            customer_demand = echelon.demand_signal(kind, self.current_demand)
        recent = [e for e in self._history if e.echelon == echelon_name][-HISTORY_WINDOW:]
        return ObservableState(
            period=self.current_period,
            echelon=echelon.name,
            role=echelon.role,
            resource=kind,
            inventory=echelon.inventory[kind],
            backlog=echelon.backlog_signal(kind),
            incoming_order=echelon.demand_signal(kind, echelon.last_order_received),
            last_order_placed=echelon.last_order_placed[kind],
            customer_demand=customer_demand,
            in_transit=tuple((e.arrival_period, e.quantity) for e in echelon.in_transit(self.ledger, kind)),
            recent_history=tuple(entry.as_dict() for entry in recent),
            order_cap=echelon.order_cap,
            holding_cost_rate=echelon.holding_cost_rate,
            backlog_cost_rate=echelon.backlog_cost_rate,
            order_delay=echelon.lead_times.order_delay,
            shipping_delay=echelon.lead_times.shipping_delay,
            production_delay=echelon.lead_times.production_delay,
            self_supplied=kind not in echelon.config.suppliers,
        )

    def _collect_decisions(
        self, period: int, overrides: Dict[Tuple[str, str], int]
    ) -> Dict[Tuple[str, str], PolicyDecision]:
        """Ask every policy for its order; the period waits for all of them (or the timeout)"""
        self.phase = GamePhase.AWAITING_DECISIONS
        chosen: Dict[Tuple[str, str], PolicyDecision] = {}
        pending: Dict[Tuple[str, str], ObservableState] = {}

        for echelon in self.chain:
            for kind in echelon.stock:
                stream = (echelon.name, kind)
                if stream in overrides:
                    chosen[stream] = PolicyDecision(overrides[stream], "Manual order entry")
                else:
                    pending[stream] = self.observe(echelon.name, kind)

        if self.concurrent_decisions:
            futures = {
                self._submit(self.policies[stream[0]].decide, state): stream
                for stream, state in pending.items()
            }
            done, not_done = wait(futures, timeout=self.decision_timeout)
            for future in not_done:
                stream = futures[future]
                chosen[stream] = self._timed_out(period, future, pending[stream])
            for future in done:
                stream = futures[future]
                chosen[stream] = self._finalize(pending[stream], future.exception(), future)
        else:
            for stream, state in pending.items():
                future = self._submit(self.policies[stream[0]].decide, state)
                done, _ = wait([future], timeout=self.decision_timeout)
                if not done:
                    chosen[stream] = self._timed_out(period, future, state)
                else:
                    chosen[stream] = self._finalize(state, future.exception(), future)

        return chosen

    def _submit(self, fn, state: ObservableState) -> Future:
        if self._executor is None:
            streams = sum(len(e.stock) for e in self.chain)
            self._executor = ThreadPoolExecutor(max_workers=streams, thread_name_prefix="policy")
        return self._executor.submit(fn, state)

    def _timed_out(self, period: int, future: Future, state: ObservableState) -> PolicyDecision:
        future.cancel()
        logger.warning("Period %d: decision for %s/%s timed out", period, state.echelon, state.resource)
        return self._fallback(state, f"no decision within {self.decision_timeout:g}s")

    def _finalize(self, state: ObservableState, error: Optional[BaseException], future) -> PolicyDecision:
        if error is not None:
            logger.warning("Decision for %s/%s failed: %s", state.echelon, state.resource, error)
            return self._fallback(state, str(error))
        return self._coerce(state, future.result())

    def _coerce(self, state: ObservableState, result: Any) -> PolicyDecision:
        try:
            return coerce_decision(result, state.order_cap)
        except Exception as exc:  # malformed result
            return self._fallback(state, str(exc))

    def _fallback(self, state: ObservableState, reason: str) -> PolicyDecision:
        try:
            return degraded_decision(self.fallback_policy, state, reason)
        except Exception:  # a broken custom fallback still must not stall the period
            logger.exception("Fallback policy failed for %s/%s", state.echelon, state.resource)
            order = state.incoming_order if state.order_cap is None else min(state.incoming_order, state.order_cap)
            return PolicyDecision(order, f"[fallback: {reason}] Matching demand of {state.incoming_order}", True)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def _describe(
        self, echelon: Echelon, settlement: Settlement, decisions: Mapping[str, PolicyDecision]
    ) -> List[GameMessage]:
        period = settlement.period
        messages = []

        arrived = {kind: q for kind, q in settlement.arrivals.items() if q > 0}
        if arrived:
            parts = ", ".join(f"+{q} {kind}" for kind, q in arrived.items())
            messages.append(GameMessage(period, Severity.INFO, f"{echelon.role}: shipment arrived ({parts})", echelon.name))

        for kind, decision in decisions.items():
            if decision.degraded:
                messages.append(GameMessage(
                    period, Severity.WARNING,
                    f"{echelon.role}: degraded decision for {kind}, ordered {decision.order}. {decision.rationale}",
                    echelon.name,
                ))

        for kind, backlog in settlement.backlog.items():
            prior = settlement.prior_backlog[kind]
            owed = settlement.owed_incoming[kind] + prior
            if backlog > prior:
                messages.append(GameMessage(
                    period, Severity.STOCKOUT,
                    f"{echelon.role}: stockout on {kind}, backlog {backlog} (was {prior})",
                    echelon.name,
                ))
            elif settlement.fulfilled[kind] < owed:
                messages.append(GameMessage(
                    period, Severity.WARNING,
                    f"{echelon.role}: partial shipment of {kind}, {settlement.fulfilled[kind]} of {owed} owed",
                    echelon.name,
                ))
        return messages

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def snapshot(self) -> ChainSnapshot:
        """Read-only view for the presentation layer"""
        views = {
            e.name: EchelonView(
                name=e.name,
                role=e.role,
                inventory=_frozen(e.inventory),
                backlog=_frozen(e.backlog),
                last_order_received=_frozen(e.last_order_received),
                last_shipped=_frozen(e.last_shipped),
                last_order_placed=_frozen(e.last_order_placed),
                last_rationale=_frozen(e.last_rationale),
                total_cost=e.total_cost,
            )
            for e in self.chain
        }
        return ChainSnapshot(
            period=self.current_period,
            phase=self.phase,
            echelons=_frozen(views),
            history=self.history,
            messages=self.messages,
            total_cost=self.total_cost,
            current_demand=_frozen(self.current_demand),
        )

    def get_results(self) -> TerminationReport:
        """Get the termination report (only available after completion)"""
        if not self.is_complete():
            raise ValueError("Game not yet complete")

        history = self._history
        echelon_costs = {
            e.name: sum(entry.cost for entry in history if entry.echelon == e.name)
            for e in self.chain
        }
        return TerminationReport(
            total_cost=self.total_cost,
            average_backlog=float(np.mean([entry.total_backlog for entry in history])),
            average_inventory=float(np.mean([entry.total_inventory for entry in history])),
            periods_played=len(self._market_demand),
            echelon_costs=_frozen(echelon_costs),
            bullwhip_ratio=self._calculate_bullwhip_ratio(),
            service_level=self._calculate_service_level(),
            degraded_decisions=sum(1 for entry in history if entry.degraded),
        )

    def _calculate_bullwhip_ratio(self) -> float:
        """Variance of the upstream-most echelon's orders over the variance of market demand"""
        upstream = self.chain[-1].name
        orders = [entry.total_order for entry in self._history if entry.echelon == upstream]
        demand = [sum(d.values()) for d in self._market_demand]
        if len(orders) < 2:
            return 1.0

        demand_var = np.var(demand)
        orders_var = np.var(orders)
        if demand_var == 0:
            return 1.0 if orders_var == 0 else float("inf")
        return float(orders_var / demand_var)

    def _calculate_service_level(self) -> float:
        """Share of market demand shipped in the period it was demanded or later"""
        total_demand = sum(sum(d.values()) for d in self._market_demand)
        if total_demand == 0:
            return 1.0
        shipped = sum(entry.total_shipped for entry in self._history if entry.echelon == self.market.name)
        return min(1.0, shipped / total_demand)
