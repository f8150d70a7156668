"""
Exogenous end-customer demand.

Two modes, both reproducible:
- schedule: demand[period] is looked up in a per-product table, clamped to
  the table's first/last entry outside its bounds.
- formula: each customer's base rate is scaled by a multiplier that is a
  configured shock factor during shock periods and otherwise a bounded
  random draw (or 1.0 when no noise range is configured).

Finished-product demand is turned into resource-kind demand through the
configured conversion matrix, summed across all customers.
"""

from typing import Dict, List

import numpy as np

from ..config import DemandConfig


def step_schedule(length: int = 20, base: int = 4, step: int = 8, step_period: int = 5) -> List[int]:
    """
    Classic Beer Game pattern: ``base`` until ``step_period`` - 1, ``step`` afterwards.
    """
    return [base if period < step_period else step for period in range(1, length + 1)]


def convert(product_demand: Dict[str, int], conversion: Dict[str, Dict[str, int]]) -> Dict[str, int]:
    """Apply a finished-unit -> resource-unit conversion matrix"""
    kinds: Dict[str, int] = {}
    for product, quantity in product_demand.items():
        for kind, ratio in conversion[product].items():
            kinds[kind] = kinds.get(kind, 0) + quantity * ratio
    return kinds


class DemandGenerator:
    """
    Demand source for the market-facing echelon.

    Random multipliers are drawn once per period from a RandomState seeded
    with ``config.seed``, in period order, so the demand for any period is
    the same regardless of the order in which periods are queried.
    """

    def __init__(self, config: DemandConfig, horizon: int = 20):
        self.config = config
        self.horizon = horizon
        self._rng = np.random.RandomState(config.seed % (2**32))
        self._noise: List[float] = []
        if config.mode == "formula" and config.noise is not None:
            self._draw_noise(horizon)

    def _draw_noise(self, periods: int) -> None:
        low, high = self.config.noise
        missing = periods - len(self._noise)
        if missing > 0:
            self._noise.extend(float(x) for x in self._rng.uniform(low, high, missing))

    def multiplier(self, period: int) -> float:
        """Demand multiplier applied to base rates in formula mode"""
        for shock in self.config.shocks:
            factor = shock.multiplier_for(period)
            if factor is not None:
                return factor
        if self.config.noise is None or period < 1:
            return 1.0
        self._draw_noise(period)
        return self._noise[period - 1]

    def active_shock(self, period: int):
        """The shock in force at ``period``, if any"""
        for shock in self.config.shocks:
            if shock.multiplier_for(period) is not None:
                return shock
        return None

    def customer_orders(self, period: int) -> Dict[str, Dict[str, int]]:
        """Per-customer finished-product orders (formula mode)"""
        if self.config.mode != "formula":
            return {}
        factor = self.multiplier(period)
        return {
            customer: {product: int(round(rate * factor)) for product, rate in rates.items()}
            for customer, rates in self.config.customers.items()
        }

    def product_demand(self, period: int) -> Dict[str, int]:
        """Finished-product demand for ``period``"""
        if self.config.mode == "schedule":
            demand = {}
            for product, table in self.config.schedule.items():
                index = min(max(period - 1, 0), len(table) - 1)
                demand[product] = table[index]
            return demand

        totals: Dict[str, int] = {}
        for orders in self.customer_orders(period).values():
            for product, quantity in orders.items():
                totals[product] = totals.get(product, 0) + quantity
        return totals

    def demand_for(self, period: int) -> Dict[str, int]:
        """Resource-kind demand seen by the market-facing echelon"""
        products = self.product_demand(period)
        if self.config.conversion is None:
            return products
        return convert(products, self.config.conversion)
