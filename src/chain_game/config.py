"""
Configuration models for the chain game.

Every game variant is a ChainConfig value: the number of echelons, the
resource kinds they hold, lead times, cost rates and the demand process are
all data, validated once when the game is built.
"""

from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError


class LeadTimes(BaseModel):
    """Fixed delays (in periods) applied to orders, shipments and production"""

    model_config = ConfigDict(frozen=True)

    order_delay: int = Field(1, ge=0)  # customer order -> supplier
    shipping_delay: int = Field(2, ge=0)  # supplier shipment -> customer
    production_delay: int = Field(2, ge=0)  # own production order -> stock


class AssemblyConfig(BaseModel):
    """Bill of materials for an echelon that builds finished units from components"""

    model_config = ConfigDict(frozen=True)

    product: str = Field(min_length=1)
    components: Dict[str, int]

    @field_validator("components")
    @classmethod
    def _positive_components(cls, components: Dict[str, int]) -> Dict[str, int]:
        if not components:
            raise ValueError("assembly needs at least one component")
        for kind, per_unit in components.items():
            if per_unit <= 0:
                raise ValueError(f"component {kind!r} must use a positive quantity per unit")
        return components


class EchelonConfig(BaseModel):
    """
    One node of the chain.

    ``stock`` lists the resource kinds held on hand. ``suppliers`` maps a
    stock kind to the upstream echelon it is ordered from; kinds without a
    supplier are produced by the echelon itself. ``serves`` maps the kinds
    the downstream customer orders onto the stock kind that fills them;
    several kinds mapped onto one stock kind share a combined pool.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    role: Optional[str] = None
    stock: List[str] = Field(default_factory=lambda: ["units"], min_length=1)
    suppliers: Dict[str, str] = Field(default_factory=dict)
    serves: Optional[Dict[str, str]] = None
    assembly: Optional[AssemblyConfig] = None
    initial_inventory: Union[int, Dict[str, int]] = 12
    initial_backlog: Union[int, Dict[str, int]] = 0
    holding_cost_rate: Optional[float] = Field(None, ge=0)
    backlog_cost_rate: Optional[float] = Field(None, ge=0)
    order_cap: Optional[int] = Field(None, ge=0)
    lead_times: Optional[LeadTimes] = None

    @property
    def label(self) -> str:
        return self.role or self.name

    def serve_map(self) -> Dict[str, str]:
        """Downstream kind -> stock kind used to fill it"""
        if self.assembly is not None:
            return {}
        if self.serves is None:
            return {kind: kind for kind in self.stock}
        return dict(self.serves)

    def served_kinds(self) -> List[str]:
        if self.assembly is not None:
            return [self.assembly.product]
        return list(self.serve_map())

    def backlog_kinds(self) -> List[str]:
        if self.assembly is not None:
            return [self.assembly.product]
        return list(self.stock)

    def initial_inventory_map(self) -> Dict[str, int]:
        if isinstance(self.initial_inventory, int):
            return {kind: self.initial_inventory for kind in self.stock}
        return {kind: self.initial_inventory.get(kind, 0) for kind in self.stock}

    def initial_backlog_map(self) -> Dict[str, int]:
        kinds = self.backlog_kinds()
        if isinstance(self.initial_backlog, int):
            return {kind: self.initial_backlog for kind in kinds}
        return {kind: self.initial_backlog.get(kind, 0) for kind in kinds}

    @model_validator(mode="after")
    def _check_kinds(self) -> "EchelonConfig":
        stock = set(self.stock)
        if len(stock) != len(self.stock):
            raise ValueError(f"{self.name}: duplicate stock kinds")

        unknown = set(self.suppliers) - stock
        if unknown:
            raise ValueError(f"{self.name}: suppliers given for kinds not held: {sorted(unknown)}")

        if self.assembly is not None:
            if self.serves is not None:
                raise ValueError(f"{self.name}: an assembly echelon cannot also declare serves")
            if set(self.assembly.components) != stock:
                raise ValueError(f"{self.name}: assembly components must match the stock kinds")
        elif self.serves is not None:
            if not self.serves:
                raise ValueError(f"{self.name}: serves must not be empty")
            bad = set(self.serves.values()) - stock
            if bad:
                raise ValueError(f"{self.name}: serves maps onto kinds not held: {sorted(bad)}")

        for field_name, kinds in (
            ("initial_inventory", stock),
            ("initial_backlog", set(self.backlog_kinds())),
        ):
            value = getattr(self, field_name)
            values = [value] if isinstance(value, int) else list(value.values())
            if any(v < 0 for v in values):
                raise ValueError(f"{self.name}: {field_name} must be non-negative")
            if isinstance(value, dict) and set(value) - kinds:
                raise ValueError(f"{self.name}: {field_name} names unknown kinds {sorted(set(value) - kinds)}")
        return self


class DemandShock(BaseModel):
    """Named demand spike: multipliers applied from start_period, one per period"""

    model_config = ConfigDict(frozen=True)

    name: str = "shock"
    start_period: int = Field(ge=1)
    multipliers: List[float] = Field(min_length=1)

    @field_validator("multipliers")
    @classmethod
    def _non_negative(cls, multipliers: List[float]) -> List[float]:
        if any(m < 0 for m in multipliers):
            raise ValueError("shock multipliers must be non-negative")
        return multipliers

    @property
    def duration(self) -> int:
        return len(self.multipliers)

    def multiplier_for(self, period: int) -> Optional[float]:
        offset = period - self.start_period
        if 0 <= offset < len(self.multipliers):
            return self.multipliers[offset]
        return None


class DemandConfig(BaseModel):
    """
    Exogenous end-customer demand.

    ``schedule`` mode looks demand up in a per-product table; ``formula`` mode
    scales per-customer base rates by shock multipliers or a bounded random
    multiplier. ``conversion`` turns finished-product demand into the
    resource kinds the market-facing echelon actually ships.
    """

    model_config = ConfigDict(frozen=True)

    mode: Literal["schedule", "formula"] = "schedule"
    schedule: Dict[str, List[int]] = Field(default_factory=dict)
    customers: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    noise: Optional[Tuple[float, float]] = None
    shocks: List[DemandShock] = Field(default_factory=list)
    seed: int = Field(42, ge=0)
    conversion: Optional[Dict[str, Dict[str, int]]] = None

    def products(self) -> List[str]:
        if self.mode == "schedule":
            return list(self.schedule)
        products: List[str] = []
        for rates in self.customers.values():
            for product in rates:
                if product not in products:
                    products.append(product)
        return products

    def kinds(self) -> List[str]:
        """Resource kinds the market-facing echelon sees demand for"""
        if self.conversion is None:
            return self.products()
        kinds: List[str] = []
        for product in self.products():
            for kind in self.conversion[product]:
                if kind not in kinds:
                    kinds.append(kind)
        return kinds

    @model_validator(mode="after")
    def _check_mode(self) -> "DemandConfig":
        if self.mode == "schedule":
            if not self.schedule:
                raise ValueError("schedule mode needs a demand schedule")
            for product, table in self.schedule.items():
                if not table:
                    raise ValueError(f"demand schedule for {product!r} is empty")
                if any(q < 0 for q in table):
                    raise ValueError(f"demand schedule for {product!r} has negative entries")
        else:
            if not self.customers:
                raise ValueError("formula mode needs at least one customer")
            for customer, rates in self.customers.items():
                if any(rate < 0 for rate in rates.values()):
                    raise ValueError(f"customer {customer!r} has a negative base rate")

        if self.noise is not None:
            low, high = self.noise
            if low < 0 or high < low:
                raise ValueError("noise must be a (low, high) range with 0 <= low <= high")

        if self.conversion is not None:
            missing = set(self.products()) - set(self.conversion)
            if missing:
                raise ValueError(f"no conversion for products {sorted(missing)}")
            for product, ratios in self.conversion.items():
                if any(r < 0 for r in ratios.values()):
                    raise ValueError(f"conversion for {product!r} has negative ratios")
        return self


class ChainConfig(BaseModel):
    """Complete, validated description of one supply chain game"""

    model_config = ConfigDict(frozen=True)

    name: str = "chain"
    max_periods: int = Field(20, gt=0)
    lead_times: LeadTimes = Field(default_factory=LeadTimes)
    holding_cost_rate: float = Field(0.5, ge=0)
    backlog_cost_rate: float = Field(1.0, ge=0)
    order_cap: Optional[int] = Field(None, ge=0)
    warmup_rate: Optional[int] = Field(None, ge=0)
    echelons: List[EchelonConfig] = Field(min_length=1)
    demand: DemandConfig

    @property
    def market_echelon(self) -> EchelonConfig:
        return self.echelons[0]

    def echelon(self, name: str) -> EchelonConfig:
        for echelon in self.echelons:
            if echelon.name == name:
                return echelon
        raise KeyError(name)

    def downstream_of(self, name: str) -> Optional[str]:
        """Name of the echelon that orders from ``name`` (None for the market-facing echelon)"""
        for echelon in self.echelons:
            if name in echelon.suppliers.values():
                return echelon.name
        return None

    def lead_times_for(self, echelon: EchelonConfig) -> LeadTimes:
        return echelon.lead_times or self.lead_times

    def holding_rate_for(self, echelon: EchelonConfig) -> float:
        if echelon.holding_cost_rate is not None:
            return echelon.holding_cost_rate
        return self.holding_cost_rate

    def backlog_rate_for(self, echelon: EchelonConfig) -> float:
        if echelon.backlog_cost_rate is not None:
            return echelon.backlog_cost_rate
        return self.backlog_cost_rate

    def order_cap_for(self, echelon: EchelonConfig) -> Optional[int]:
        if echelon.order_cap is not None:
            return echelon.order_cap
        return self.order_cap

    @model_validator(mode="after")
    def _check_topology(self) -> "ChainConfig":
        position = {}
        for i, echelon in enumerate(self.echelons):
            if echelon.name in position:
                raise ValueError(f"duplicate echelon name {echelon.name!r}")
            position[echelon.name] = i

        customer_of: Dict[str, str] = {}
        for i, echelon in enumerate(self.echelons):
            for kind, supplier in echelon.suppliers.items():
                if supplier not in position:
                    raise ValueError(f"{echelon.name}: unknown supplier {supplier!r}")
                if position[supplier] <= i:
                    raise ValueError(
                        f"{echelon.name}: supplier {supplier!r} must be listed upstream of its customer"
                    )
                if customer_of.setdefault(supplier, echelon.name) != echelon.name:
                    raise ValueError(f"{supplier!r} supplies more than one customer")
                if kind not in self.echelons[position[supplier]].served_kinds():
                    raise ValueError(f"{supplier!r} does not serve {kind!r} ordered by {echelon.name!r}")

        for echelon in self.echelons[1:]:
            if echelon.name not in customer_of:
                raise ValueError(f"{echelon.name!r} has no downstream customer")

        unserved = set(self.demand.kinds()) - set(self.market_echelon.served_kinds())
        if unserved:
            raise ValueError(
                f"market-facing echelon {self.market_echelon.name!r} does not serve {sorted(unserved)}"
            )
        return self


def build_config(data: Union[ChainConfig, Mapping[str, Any]]) -> ChainConfig:
    """Validate ``data`` into a ChainConfig, raising ConfigurationError on failure"""
    if isinstance(data, ChainConfig):
        return data
    try:
        return ChainConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid chain configuration:\n{exc}") from exc


def load_config(path: str) -> ChainConfig:
    """Load and validate a JSON configuration file"""
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()
    try:
        return ChainConfig.model_validate_json(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid chain configuration in {path}:\n{exc}") from exc
