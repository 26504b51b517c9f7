from __future__ import annotations
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, PositiveInt, field_validator, model_validator

# ────────────────────────────────────────────────────────────────────────────
# Errors
# ────────────────────────────────────────────────────────────────────────────

class MarketDataError(ValueError):
    """Reference data is missing or inconsistent."""

class UnknownCommodityError(MarketDataError):
    def __init__(self, commodity_id: str):
        super().__init__(f"Unknown commodity: {commodity_id!r}")
        self.commodity_id = commodity_id

class UnknownLocationError(MarketDataError):
    def __init__(self, location_id: str):
        super().__init__(f"Unknown location: {location_id!r}")
        self.location_id = location_id

class InsufficientStockError(MarketDataError):
    def __init__(self, location_id: str, commodity_id: str, requested: float, available: float):
        super().__init__(
            f"{location_id}/{commodity_id}: requested {requested}, only {available} in stock"
        )
        self.requested = requested
        self.available = available

# ────────────────────────────────────────────────────────────────────────────
# Commodities & locations
# ────────────────────────────────────────────────────────────────────────────

class Commodity(BaseModel):
    id: str
    display_name: str = ""
    tier: PositiveInt = 1
    # [low, high] credits; the spread scales weekly volatility
    base_price_range: Tuple[float, float]
    # [min, max] units a market normally holds
    canonical_availability: Tuple[float, float]

    @field_validator("base_price_range", "canonical_availability")
    @classmethod
    def _ordered(cls, v):
        low, high = v
        if low < 0 or high < low:
            raise ValueError(f"range must satisfy 0 <= low <= high, got {list(v)}")
        return v

    @property
    def price_spread(self) -> float:
        return self.base_price_range[1] - self.base_price_range[0]

    @property
    def mean_availability(self) -> float:
        return (self.canonical_availability[0] + self.canonical_availability[1]) / 2


class Location(BaseModel):
    id: str
    display_name: str = ""
    # > 1.0 exporter (more stock, cheaper), < 1.0 importer
    availability_modifier: Dict[str, float] = Field(default_factory=dict)
    fuel_price: float = 0.0

    def modifier_for(self, commodity_id: str) -> float:
        return self.availability_modifier.get(commodity_id, 1.0)

# ────────────────────────────────────────────────────────────────────────────
# System states (galaxy-wide economic events)
# ────────────────────────────────────────────────────────────────────────────

class CommodityModifiers(BaseModel):
    volatility_mult: Optional[float] = None
    mean_reversion_mult: Optional[float] = None
    price: Optional[float] = None
    availability: Optional[float] = None

class StateModifiers(BaseModel):
    commodity: Dict[str, CommodityModifiers] = Field(default_factory=dict)

class SystemState(BaseModel):
    id: str
    display_name: str = ""
    description: str = ""
    duration: PositiveInt = 28
    modifiers: StateModifiers = Field(default_factory=StateModifiers)

    def commodity_modifiers(self, commodity_id: str) -> Optional[CommodityModifiers]:
        return self.modifiers.commodity.get(commodity_id)

# ────────────────────────────────────────────────────────────────────────────
# Tuning
# ────────────────────────────────────────────────────────────────────────────

class EngineRules(BaseModel):
    daily_price_volatility: float = Field(default=0.25, ge=0)
    mean_reversion_strength: float = Field(default=0.04, ge=0)
    market_pressure_decay: float = Field(default=0.70, gt=0, lt=1, description="Weekly pressure decay factor")
    local_price_mod_strength: float = Field(default=0.5, ge=0, le=1)
    player_pressure_strength: float = Field(default=0.5, ge=0)
    price_history_length: PositiveInt = 65
    pressure_delay_days: int = Field(default=7, ge=0, description="Days before a trade moves price or target stock")
    depletion_hike_days: int = Field(default=7, ge=0)
    depletion_hike_multiplier: float = Field(default=1.5, ge=1)
    inactivity_reset_days: PositiveInt = 120
    replenish_rate: float = Field(default=0.10, gt=0, le=1)
    rival_arbitrage_reversion: float = Field(default=0.20, ge=0)
    hover_reversion_damping: float = Field(default=0.1, ge=0)
    depletion_threshold: float = Field(default=0.08, ge=0, description="Share of target stock a buy-out must reach")
    depletion_bonus_cooldown_days: int = Field(default=365, ge=0)
    days_per_tick: PositiveInt = 7

# ────────────────────────────────────────────────────────────────────────────
# Mutable market state (owned by MarketEngine)
# ────────────────────────────────────────────────────────────────────────────

class _RivalArbitrage(BaseModel):
    is_active: bool = False
    end_day: int = 0

class _InventoryRecord(BaseModel):
    quantity: float = Field(default=0.0, ge=0)
    # negative = net player buying, positive = net player selling
    market_pressure: float = 0.0
    last_player_interaction_timestamp: int = 0
    price_lock_end_day: int = 0
    depletion_day: int = 0
    is_depleted: bool = False
    depletion_bonus_day: int = 0
    hover_until_day: int = 0
    rival_arbitrage: _RivalArbitrage = Field(default_factory=_RivalArbitrage)

class _PriceSample(BaseModel):
    day: int
    price: int

class _MarketState(BaseModel):
    day: int = 1
    revealed_tier: PositiveInt = 1
    prices: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    inventory: Dict[str, Dict[str, _InventoryRecord]] = Field(default_factory=dict)
    galactic_averages: Dict[str, float] = Field(default_factory=dict)
    price_history: Dict[str, Dict[str, List[_PriceSample]]] = Field(default_factory=dict)
    system_state_id: Optional[str] = None
    system_state_expiration_day: int = 0

    @model_validator(mode="after")
    def _inventory_matches_prices(self):
        for loc_id, goods in self.inventory.items():
            missing = set(goods) - set(self.prices.get(loc_id, {}))
            if missing:
                raise ValueError(f"{loc_id}: inventory without prices for {sorted(missing)}")
        return self
