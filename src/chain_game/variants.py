"""
Predefined game variants.

Each variant is only a ChainConfig value run by the same engine:

- beer: the classic four-tier Beer Game with a step change in demand
- fast_food: a regional distribution centre sourcing buns and proteins for
  three restaurants, with a marketing campaign demand shock
- semiconductor: a GPU assembly node limited by two component suppliers
  through a demand hype cycle
"""

from typing import Any, Callable, Dict, List

from .config import ChainConfig, build_config
from .engine.demand import step_schedule
from .engine.policies import DecisionPolicy, create_policy

SEMICONDUCTOR_DEMAND = [
    200, 250, 300, 400, 500,  # ramp
    800, 1000, 1200, 1100, 900,  # peak hype
    800, 850, 900, 1000, 1200,  # second wave
    1300, 1400, 1200, 1000, 800,
]


def beer_game_config(**overrides: Any) -> ChainConfig:
    """Retailer -> Wholesaler -> Distributor -> Manufacturer"""
    data: Dict[str, Any] = {
        "name": "beer",
        "max_periods": 20,
        "lead_times": {"order_delay": 1, "shipping_delay": 2, "production_delay": 2},
        "holding_cost_rate": 0.5,
        "backlog_cost_rate": 1.0,
        "warmup_rate": 4,
        "echelons": [
            {"name": "retailer", "role": "Retailer", "suppliers": {"units": "wholesaler"}},
            {"name": "wholesaler", "role": "Wholesaler", "suppliers": {"units": "distributor"}},
            {"name": "distributor", "role": "Distributor", "suppliers": {"units": "manufacturer"}},
            {"name": "manufacturer", "role": "Manufacturer"},
        ],
        "demand": {"mode": "schedule", "schedule": {"units": step_schedule(20)}},
    }
    data.update(overrides)
    return build_config(data)


def fast_food_config(**overrides: Any) -> ChainConfig:
    """Distribution centre -> bun bakery / protein supplier, three restaurants downstream"""
    data: Dict[str, Any] = {
        "name": "fast_food",
        "max_periods": 20,
        "lead_times": {"order_delay": 0, "shipping_delay": 2, "production_delay": 2},
        "holding_cost_rate": 0.5,
        "backlog_cost_rate": 2.0,
        "echelons": [
            {
                "name": "dc",
                "role": "Regional DC",
                "stock": ["buns", "beef", "fish"],
                "suppliers": {"buns": "bakery", "beef": "protein", "fish": "protein"},
                "initial_inventory": {"buns": 1500, "beef": 1000, "fish": 500},
            },
            {
                "name": "bakery",
                "role": "Bun Bakery",
                "stock": ["buns"],
                "initial_inventory": 3000,
                "backlog_cost_rate": 5.0,
            },
            {
                "name": "protein",
                "role": "Protein Supplier",
                "stock": ["protein"],
                "serves": {"beef": "protein", "fish": "protein"},
                "initial_inventory": 3000,
                "backlog_cost_rate": 5.0,
            },
        ],
        "demand": {
            "mode": "formula",
            "customers": {
                "store_a": {"bigmac": 100, "filet": 20},
                "store_b": {"bigmac": 90, "filet": 30},
                "store_c": {"bigmac": 110, "filet": 10},
            },
            "noise": (0.8, 1.2),
            "shocks": [{"name": "campaign", "start_period": 5, "multipliers": [2.5, 1.8]}],
            "conversion": {
                "bigmac": {"buns": 3, "beef": 2},
                "filet": {"buns": 2, "fish": 1},
            },
        },
    }
    data.update(overrides)
    return build_config(data)


def semiconductor_config(**overrides: Any) -> ChainConfig:
    """GPU assembly from CoWoS packaging and HBM memory"""
    data: Dict[str, Any] = {
        "name": "semiconductor",
        "max_periods": 20,
        "lead_times": {"order_delay": 0, "shipping_delay": 2, "production_delay": 2},
        "holding_cost_rate": 50.0,
        "backlog_cost_rate": 500.0,
        "order_cap": 2000,
        "echelons": [
            {
                "name": "gpu",
                "role": "GPU Assembly",
                "stock": ["cowos", "hbm"],
                "suppliers": {"cowos": "cowos_supplier", "hbm": "hbm_supplier"},
                "assembly": {"product": "gpu", "components": {"cowos": 1, "hbm": 1}},
                "initial_inventory": 400,
            },
            {"name": "cowos_supplier", "role": "CoWoS Packaging", "stock": ["cowos"], "initial_inventory": 400},
            {"name": "hbm_supplier", "role": "HBM Memory", "stock": ["hbm"], "initial_inventory": 400},
        ],
        "demand": {"mode": "schedule", "schedule": {"gpu": list(SEMICONDUCTOR_DEMAND)}},
    }
    data.update(overrides)
    return build_config(data)


VARIANTS: Dict[str, Callable[..., ChainConfig]] = {
    "beer": beer_game_config,
    "fast_food": fast_food_config,
    "semiconductor": semiconductor_config,
}


def get_variant(name: str, **overrides: Any) -> ChainConfig:
    """Build a variant's configuration, optionally overriding top-level fields"""
    try:
        factory = VARIANTS[name]
    except KeyError:
        raise ValueError(f"Unknown variant: {name}. Choose from {list_variants()}") from None
    return factory(**overrides)


def list_variants() -> List[str]:
    return list(VARIANTS)


def get_variant_description(name: str) -> str:
    """Get description of a game variant"""
    descriptions = {
        "beer": "Classic Beer Game: 4 tiers, demand steps from 4 to 8 units in period 5.",
        "fast_food": "Fast-food DC: buns, beef and fish for 3 restaurants; 'campaign' demand shock in period 5.",
        "semiconductor": "GPU assembly limited by CoWoS and HBM supply through a demand hype cycle.",
    }
    return descriptions.get(name, "Unknown variant")


def default_policies(config: ChainConfig, kind: str = "backlog", **kwargs: Any) -> Dict[str, DecisionPolicy]:
    """One local heuristic policy of ``kind`` per echelon"""
    return {echelon.name: create_policy(kind, **kwargs) for echelon in config.echelons}
