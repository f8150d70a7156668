"""
Decision policies for chain game echelons.

A policy maps what an echelon can observe to an order quantity and a short
rationale. Policies never touch engine state; the orchestrator hands them a
frozen ObservableState and applies the returned PolicyDecision itself.

Includes the local heuristics used as baselines and as the mandatory
fallback when a remote or human provider cannot answer.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from ..exceptions import InvalidOrderError, PolicyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObservableState:
    """
    Everything a policy may see for one (echelon, resource kind) stream.

    ``incoming_order`` is the order last received from the downstream
    customer, expressed in units of ``resource``. ``customer_demand`` is
    only set for the market-facing echelon and holds this period's demand.
    ``in_transit`` lists (arrival_period, quantity) pairs still due on the
    echelon's own supply queue.
    """
    period: int
    echelon: str
    role: str
    resource: str
    inventory: int
    backlog: int
    incoming_order: int
    last_order_placed: int = 0
    customer_demand: Optional[int] = None
    in_transit: Tuple[Tuple[int, int], ...] = ()
    recent_history: Tuple[Dict[str, Any], ...] = ()
    order_cap: Optional[int] = None
    holding_cost_rate: float = 0.0
    backlog_cost_rate: float = 0.0
    order_delay: int = 0
    shipping_delay: int = 0
    production_delay: int = 0
    self_supplied: bool = False

    @property
    def pipeline_total(self) -> int:
        return sum(quantity for _, quantity in self.in_transit)

    @property
    def inventory_position(self) -> int:
        return self.inventory + self.pipeline_total - self.backlog

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view for remote providers"""
        data = asdict(self)
        data["in_transit"] = [{"arrival_period": p, "quantity": q} for p, q in self.in_transit]
        data["recent_history"] = [dict(entry) for entry in self.recent_history]
        return data


@dataclass(frozen=True)
class PolicyDecision:
    """An order quantity with the reasoning behind it"""
    order: int
    rationale: str = ""
    degraded: bool = False


def sanitize_order(value: Any, cap: Optional[int] = None) -> int:
    """
    Clamp a policy's order into ``[0, cap]``.

    Raises PolicyError for values that are not numbers at all.
    """
    if isinstance(value, bool):
        raise PolicyError(f"Order must be a number, got {value!r}")
    try:
        quantity = float(value)
    except (TypeError, ValueError) as exc:
        raise PolicyError(f"Order must be a number, got {value!r}") from exc
    if math.isnan(quantity) or math.isinf(quantity):
        raise PolicyError(f"Order must be finite, got {value!r}")

    order = max(0, int(round(quantity)))
    if cap is not None:
        order = min(order, cap)
    return order


def coerce_decision(result: Any, cap: Optional[int] = None) -> PolicyDecision:
    """Normalise whatever a policy returned into a valid PolicyDecision"""
    if isinstance(result, PolicyDecision):
        order = sanitize_order(result.order, cap)
        return PolicyDecision(order, str(result.rationale or ""), result.degraded)
    if isinstance(result, dict):
        if "order" not in result:
            raise PolicyError(f"Decision has no order: {result!r}")
        rationale = result.get("rationale", result.get("reasoning", ""))
        return PolicyDecision(sanitize_order(result["order"], cap), str(rationale or ""))
    return PolicyDecision(sanitize_order(result, cap))


def parse_order_input(text: Any, cap: Optional[int] = None) -> int:
    """
    Validate a human-entered order quantity.

    Unlike ``sanitize_order`` nothing is clamped: negative, fractional,
    non-numeric or over-cap input is rejected with InvalidOrderError.
    """
    if isinstance(text, bool):
        raise InvalidOrderError(f"Order quantity must be a whole number, got {text!r}")
    if isinstance(text, int):
        order = text
    else:
        try:
            order = int(str(text).strip())
        except ValueError:
            raise InvalidOrderError(f"Order quantity must be a whole number, got {text!r}") from None
    if order < 0:
        raise InvalidOrderError(f"Order quantity cannot be negative ({order})")
    if cap is not None and order > cap:
        raise InvalidOrderError(f"Order quantity {order} exceeds the maximum of {cap}")
    return order


class DecisionPolicy(ABC):
    """
    Abstract base class for ordering policies.

    Each echelon is assigned one policy; the orchestrator queries it once per
    period for every resource kind the echelon orders.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or self.__class__.__name__

    @abstractmethod
    def decide(self, state: ObservableState) -> PolicyDecision:
        """
        Decide this period's order.

        Args:
            state: Frozen view of the echelon for one resource kind

        Returns:
            PolicyDecision with a non-negative order and a short rationale
        """

    def reset(self) -> None:
        """Reset internal state (called when a game restarts)"""
        pass

    def close(self) -> None:
        """Release external resources (connections, sessions)"""
        pass


class ConstantPolicy(DecisionPolicy):
    """Always orders the same quantity"""

    def __init__(self, quantity: int = 4, name: Optional[str] = None):
        super().__init__(name)
        self.quantity = quantity

    def decide(self, state: ObservableState) -> PolicyDecision:
        return PolicyDecision(self.quantity, f"Fixed order of {self.quantity}")


class DemandMatchingPolicy(DecisionPolicy):
    """
    Pass-through ordering: order the last demand received.

    With ``backlog_fraction`` > 0 part of the outstanding backlog is
    re-ordered as well.
    """

    def __init__(self, backlog_fraction: float = 0.0, name: Optional[str] = None):
        super().__init__(name)
        self.backlog_fraction = backlog_fraction

    def decide(self, state: ObservableState) -> PolicyDecision:
        order = state.incoming_order + int(math.floor(state.backlog * self.backlog_fraction))
        if self.backlog_fraction and state.backlog:
            return PolicyDecision(order, f"Matching demand of {state.incoming_order} plus backlog share")
        return PolicyDecision(order, f"Matching demand of {state.incoming_order}")


class BacklogChasingPolicy(DemandMatchingPolicy):
    """
    Canonical fallback: incoming demand plus a fraction of what is owed.

    Total for every state, which is what a fallback must be.
    """

    def __init__(self, backlog_fraction: float = 0.5, name: Optional[str] = None):
        super().__init__(backlog_fraction, name)


class OrderUpToPolicy(DecisionPolicy):
    """
    Order-up-to (target inventory) policy.

    Order = incoming demand + max(0, target - inventory) + backlog, where the
    target is fixed or, with ``demand_cover``, a multiple of the last demand.
    """

    def __init__(
        self,
        target_inventory: int = 12,
        demand_cover: Optional[float] = None,
        name: Optional[str] = None,
    ):
        super().__init__(name)
        self.target_inventory = target_inventory
        self.demand_cover = demand_cover

    def target(self, state: ObservableState) -> int:
        if self.demand_cover and state.incoming_order > 0:
            return int(round(state.incoming_order * self.demand_cover))
        return self.target_inventory

    def decide(self, state: ObservableState) -> PolicyDecision:
        target = self.target(state)
        gap = max(0, target - state.inventory)
        order = state.incoming_order + gap + state.backlog
        return PolicyDecision(max(0, order), f"Restoring inventory toward target {target}")


class StermanPolicy(DecisionPolicy):
    """
    Sterman (1989) anchoring-and-adjustment heuristic.

    Order = smoothed demand + alpha * backlog + beta * (target - inventory)

    Based on:
    Sterman, J. D. (1989). Modeling managerial behavior: Misperceptions of feedback
    in a dynamic decision making experiment. Management Science, 35(3), 321-339.
    """

    def __init__(
        self,
        desired_inventory: int = 12,
        backlog_weight: float = 0.5,
        inventory_weight: float = 0.5,
        demand_smoothing: float = 0.3,
        initial_estimate: Optional[float] = None,
        name: Optional[str] = None,
    ):
        super().__init__(name)
        self.desired_inventory = desired_inventory
        self.backlog_weight = backlog_weight
        self.inventory_weight = inventory_weight
        self.demand_smoothing = demand_smoothing
        self.initial_estimate = initial_estimate
        self.demand_estimate: Dict[Tuple[str, str], float] = {}

    def decide(self, state: ObservableState) -> PolicyDecision:
        key = (state.echelon, state.resource)
        if key not in self.demand_estimate:
            start = self.initial_estimate if self.initial_estimate is not None else state.incoming_order
            self.demand_estimate[key] = float(start)
        else:
            self.demand_estimate[key] = (
                self.demand_smoothing * state.incoming_order
                + (1 - self.demand_smoothing) * self.demand_estimate[key]
            )

        order = (
            self.demand_estimate[key]
            + self.backlog_weight * state.backlog
            + self.inventory_weight * (self.desired_inventory - state.inventory)
        )
        order = max(0, int(round(order)))
        return PolicyDecision(order, f"Smoothed demand {self.demand_estimate[key]:.1f}, adjusting stock")

    def reset(self) -> None:
        self.demand_estimate = {}


class HumanPolicy(DecisionPolicy):
    """
    Marks an echelon whose orders are entered by a person.

    The orders themselves arrive through ``ChainGame.advance_period``;
    asking this policy directly is an error that the orchestrator never
    lets through.
    """

    def decide(self, state: ObservableState) -> PolicyDecision:
        raise PolicyError(f"{state.echelon} ({state.resource}) needs a manual order")


class ResilientPolicy(DecisionPolicy):
    """
    Wrap an unreliable policy with a deterministic fallback.

    Any exception or malformed result from ``primary`` is replaced by the
    fallback's decision, flagged ``degraded`` with the failure reason in
    the rationale.
    """

    def __init__(
        self,
        primary: DecisionPolicy,
        fallback: Optional[DecisionPolicy] = None,
        name: Optional[str] = None,
    ):
        super().__init__(name or f"resilient_{primary.name}")
        self.primary = primary
        self.fallback = fallback or BacklogChasingPolicy()

    def decide(self, state: ObservableState) -> PolicyDecision:
        try:
            return coerce_decision(self.primary.decide(state), state.order_cap)
        except Exception as exc:  # any provider failure is recovered here
            logger.warning("%s failed for %s/%s: %s", self.primary.name, state.echelon, state.resource, exc)
            return degraded_decision(self.fallback, state, str(exc))

    def reset(self) -> None:
        self.primary.reset()
        self.fallback.reset()

    def close(self) -> None:
        self.primary.close()
        self.fallback.close()


def degraded_decision(fallback: DecisionPolicy, state: ObservableState, reason: str) -> PolicyDecision:
    """Fallback decision flagged as degraded, with ``reason`` in the rationale"""
    decision = coerce_decision(fallback.decide(state), state.order_cap)
    rationale = f"[fallback: {reason}] {decision.rationale}".strip()
    return PolicyDecision(decision.order, rationale, degraded=True)


def create_policy(policy_type: str, **kwargs) -> DecisionPolicy:
    """Factory function to create local policies"""
    if policy_type == "constant":
        return ConstantPolicy(**kwargs)
    elif policy_type == "demand":
        return DemandMatchingPolicy(**kwargs)
    elif policy_type == "backlog":
        return BacklogChasingPolicy(**kwargs)
    elif policy_type == "orderupto":
        return OrderUpToPolicy(**kwargs)
    elif policy_type == "sterman":
        return StermanPolicy(**kwargs)
    elif policy_type == "human":
        return HumanPolicy(**kwargs)
    else:
        raise ValueError(f"Unknown policy type: {policy_type}")


def get_policy_descriptions() -> Dict[str, str]:
    """Get descriptions of the local policies"""
    return {
        "constant": "Fixed order every period",
        "demand": "Order = last demand received (pass-through)",
        "backlog": "Order = last demand + half of the backlog (default fallback)",
        "orderupto": "Order = demand + inventory gap to target + backlog",
        "sterman": "Sterman (1989) anchoring and adjustment heuristic",
        "human": "Orders entered manually each period",
    }
