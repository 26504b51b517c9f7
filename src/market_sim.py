import logging
import math
import random
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Mapping, Optional

import market_objects as G
from market_register import Registry, load_registry, rules_from_registry

logger = logging.getLogger(__name__)

TradeType = Literal["buy", "sell"]

# Price lock length (days) by half of the year
LOCK_FIRST_HALF = (75, 120)
LOCK_SECOND_HALF = (105, 195)
DAYS_PER_YEAR = 365
# Used when a commodity reports no availability maximum
DEFAULT_AVAILABILITY_MAX = 100
PRESSURE_EPSILON = 0.001


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def skewed_random(low: float, high: float, rng: random.Random) -> int:
    """
    Skewed integer in [low, high): the mean of three rolls clusters toward
    the middle before the square root reshapes it.
    """
    roll = (rng.random() + rng.random() + rng.random()) / 3
    return math.floor(low + (high - low) * math.sqrt(roll))


# -----------------------------------
# Behaviors (one pass of the weekly tick each)
# -----------------------------------

class Behavior:
    def tick(self, engine: "MarketEngine", day: int, rng: random.Random) -> None:
        raise NotImplementedError


class SystemStateBehavior(Behavior):
    """Rolls a new galaxy-wide economic state once the current one expires."""

    def tick(self, engine, day, rng):
        state = engine.state
        if day <= state.system_state_expiration_day:
            return
        if not engine.system_states:
            return
        selected = rng.choice(list(engine.system_states.values()))
        state.system_state_id = selected.id
        state.system_state_expiration_day = day + selected.duration
        logger.info("Day %d: system state %r active until day %d",
                    day, selected.id, state.system_state_expiration_day)


class PriceBehavior(Behavior):
    """Weekly price drift: noise, mean reversion, delayed player pressure."""

    def tick(self, engine, day, rng):
        system_state = engine.active_system_state
        for location in engine.locations.values():
            for commodity in engine.visible_commodities():
                self._evolve(engine, location, commodity, system_state, day, rng)
            record_price_history(engine, location.id)

    def _evolve(self, engine: "MarketEngine", location: G.Location, commodity: G.Commodity,
                system_state: Optional[G.SystemState], day: int, rng: random.Random) -> None:
        rules = engine.rules
        item = engine.state.inventory[location.id][commodity.id]
        price = engine.state.prices[location.id][commodity.id]
        baseline = engine.local_baseline(location.id, commodity.id)

        volatility = rules.daily_price_volatility
        mean_reversion = rules.mean_reversion_strength
        mods = system_state.commodity_modifiers(commodity.id) if system_state else None
        if mods:
            if mods.volatility_mult is not None:
                volatility *= mods.volatility_mult
            if mods.mean_reversion_mult is not None:
                mean_reversion *= mods.mean_reversion_mult

        random_fluctuation = (rng.random() - 0.5) * commodity.price_spread * volatility

        reversion_effect = (baseline - price) * mean_reversion
        arbitrage = item.rival_arbitrage
        # A recent player trade freezes reversion for the lock period
        locked = day < item.price_lock_end_day
        if locked:
            reversion_effect = 0.0
        if arbitrage.is_active and day >= arbitrage.end_day:
            arbitrage.is_active = False
        elif arbitrage.is_active and not locked:
            reversion_effect = (baseline - price) * rules.rival_arbitrage_reversion

        # Hover scales whatever reversion survived the checks above
        if item.hover_until_day > day:
            reversion_effect *= rules.hover_reversion_damping
        elif item.hover_until_day > 0:
            item.hover_until_day = 0

        pressure_effect = 0.0
        last_touch = item.last_player_interaction_timestamp
        if last_touch > 0 and day >= last_touch + rules.pressure_delay_days:
            # Net buying (negative) pushes price up, net selling pushes it down
            pressure_effect = baseline * item.market_pressure * -1 * rules.player_pressure_strength

        hike = 1.0
        if item.is_depleted and day < item.depletion_day + rules.depletion_hike_days:
            hike = rules.depletion_hike_multiplier

        new_price = price + random_fluctuation + reversion_effect + pressure_effect * hike
        if mods and mods.price is not None:
            new_price *= mods.price

        if not math.isfinite(new_price):
            new_price = price
        engine.state.prices[location.id][commodity.id] = max(1, round_half_up(new_price))

        item.market_pressure *= rules.market_pressure_decay
        if abs(item.market_pressure) < PRESSURE_EPSILON:
            item.market_pressure = 0.0


class ReplenishBehavior(Behavior):
    """Moves stock toward a demand-adjusted target, with visual noise."""

    def tick(self, engine, day, rng):
        system_state = engine.active_system_state
        for location in engine.locations.values():
            for commodity in engine.visible_commodities():
                self._replenish(engine, location, commodity, system_state, day, rng)

    def _replenish(self, engine: "MarketEngine", location: G.Location, commodity: G.Commodity,
                   system_state: Optional[G.SystemState], day: int, rng: random.Random) -> None:
        rules = engine.rules
        item = engine.state.inventory[location.id][commodity.id]
        last_touch = item.last_player_interaction_timestamp

        # Market memory: forget the player after a long absence
        if last_touch > 0 and day - last_touch > rules.inactivity_reset_days:
            item.quantity = float(engine.baseline_stock(location.id, commodity.id))
            item.last_player_interaction_timestamp = 0
            item.market_pressure = 0.0
            item.depletion_day = 0
            item.is_depleted = False
            item.price_lock_end_day = 0
            logger.debug("Day %d: %s/%s reset after %d idle days",
                         day, location.id, commodity.id, day - last_touch)
            return

        target_stock = engine.target_stock(location.id, commodity.id, delay_buying=True)
        replenish_amount = (target_stock - item.quantity) * rules.replenish_rate

        emergency_stock = 0
        if item.is_depleted:
            emergency_stock = skewed_random(1, 5, rng)
            # depletion_day is kept; the price hike window still needs it
            item.is_depleted = False
        elif item.quantity <= 0:
            emergency_stock = skewed_random(1, 5, rng)
        item.quantity += replenish_amount + emergency_stock

        swing = rng.random() * 0.15 + 0.15
        direction = -1 if rng.random() < 0.5 else 1
        item.quantity *= 1 + swing * direction

        mods = system_state.commodity_modifiers(commodity.id) if system_state else None
        if mods and mods.availability is not None:
            item.quantity *= mods.availability

        if not math.isfinite(item.quantity):
            item.quantity = 0.0
        item.quantity = float(max(0, round_half_up(item.quantity)))


class HistoryBehavior(Behavior):
    """
    Records the day's prices for every location. PriceBehavior already does
    this, so in the default pipeline this is a same-day overwrite; it is what
    records history for pipelines built without PriceBehavior.
    """

    def tick(self, engine, day, rng):
        for location_id in engine.locations:
            record_price_history(engine, location_id)


def record_price_history(engine: "MarketEngine", location_id: str) -> None:
    """Append today's price per visible commodity; same-day calls overwrite."""
    state = engine.state
    cap = engine.rules.price_history_length
    series_by_good = state.price_history.setdefault(location_id, {})
    for commodity in engine.visible_commodities():
        history = series_by_good.setdefault(commodity.id, [])
        current = state.prices[location_id][commodity.id]
        if history and history[-1].day == state.day:
            history[-1].price = current
        else:
            history.append(G._PriceSample(day=state.day, price=current))
        if len(history) > cap:
            del history[:len(history) - cap]


# -----------------------------------
# Engine
# -----------------------------------

class MarketEngine:
    """
    Owns the market state for every location and commodity and advances it.

    The weekly tick runs the registered behaviors in order; transactions are
    applied synchronously between ticks by the caller.
    """

    def __init__(
        self,
        commodities: Iterable[G.Commodity],
        locations: Iterable[G.Location],
        system_states: Iterable[G.SystemState] = (),
        rules: Optional[G.EngineRules] = None,
        galactic_averages: Optional[Mapping[str, float]] = None,
        prices: Optional[Mapping[str, Mapping[str, float]]] = None,
        revealed_tier: Optional[int] = None,
        day: int = 1,
        seed: int = 0,
        behaviors: Optional[List[Behavior]] = None,
    ):
        self.commodities: Dict[str, G.Commodity] = {c.id: c for c in commodities}
        self.locations: Dict[str, G.Location] = {loc.id: loc for loc in locations}
        self.system_states: Dict[str, G.SystemState] = {s.id: s for s in system_states}
        self.rules = rules or G.EngineRules()
        self.random = random.Random(seed)
        self._check_references(galactic_averages, prices)

        if revealed_tier is None:
            revealed_tier = max((c.tier for c in self.commodities.values()), default=1)
        self.state = G._MarketState(day=day, revealed_tier=revealed_tier)
        self._seed_state(galactic_averages or {}, prices or {})

        self.behaviors: List[Behavior] = []
        for behavior in behaviors if behaviors is not None else self.default_behaviors():
            self.register(behavior)

    @staticmethod
    def default_behaviors() -> List[Behavior]:
        return [SystemStateBehavior(), PriceBehavior(), ReplenishBehavior(), HistoryBehavior()]

    @classmethod
    def from_registry(cls, registry: Registry, **kwargs) -> "MarketEngine":
        return cls(
            commodities=registry.get("Commodity", {}).values(),  # type: ignore
            locations=registry.get("Location", {}).values(),  # type: ignore
            system_states=registry.get("SystemState", {}).values(),  # type: ignore
            rules=kwargs.pop("rules", None) or rules_from_registry(registry),
            **kwargs,
        )

    def register(self, behavior: Behavior) -> None:
        self.behaviors.append(behavior)

    # ── construction helpers ─────────────────────────────────────────────

    def _check_references(self, galactic_averages, prices) -> None:
        if not self.commodities:
            raise G.MarketDataError("At least one commodity is required")
        if not self.locations:
            raise G.MarketDataError("At least one location is required")
        for loc in self.locations.values():
            for commodity_id in loc.availability_modifier:
                if commodity_id not in self.commodities:
                    raise G.UnknownCommodityError(commodity_id)
        for system_state in self.system_states.values():
            for commodity_id in system_state.modifiers.commodity:
                if commodity_id not in self.commodities:
                    raise G.UnknownCommodityError(commodity_id)
        for commodity_id in galactic_averages or {}:
            if commodity_id not in self.commodities:
                raise G.UnknownCommodityError(commodity_id)
        for location_id, goods in (prices or {}).items():
            if location_id not in self.locations:
                raise G.UnknownLocationError(location_id)
            for commodity_id in goods:
                if commodity_id not in self.commodities:
                    raise G.UnknownCommodityError(commodity_id)

    def _seed_state(self, galactic_averages: Mapping[str, float],
                    prices: Mapping[str, Mapping[str, float]]) -> None:
        state = self.state
        for commodity in self.commodities.values():
            low, high = commodity.base_price_range
            state.galactic_averages[commodity.id] = float(
                galactic_averages.get(commodity.id, (low + high) / 2)
            )
        for location in self.locations.values():
            state.prices[location.id] = {}
            state.inventory[location.id] = {}
            state.price_history[location.id] = {}
            for commodity in self.commodities.values():
                given = prices.get(location.id, {}).get(commodity.id)
                start = given if given is not None else self.local_baseline(location.id, commodity.id)
                state.prices[location.id][commodity.id] = max(1, round_half_up(start))
                state.inventory[location.id][commodity.id] = G._InventoryRecord(
                    quantity=self.baseline_stock(location.id, commodity.id)
                )

    # ── lookups ──────────────────────────────────────────────────────────

    def _location(self, location_id: str) -> G.Location:
        try:
            return self.locations[location_id]
        except KeyError:
            raise G.UnknownLocationError(location_id) from None

    def _commodity(self, commodity_id: str) -> G.Commodity:
        try:
            return self.commodities[commodity_id]
        except KeyError:
            raise G.UnknownCommodityError(commodity_id) from None

    def _record(self, location_id: str, commodity_id: str) -> G._InventoryRecord:
        self._location(location_id)
        self._commodity(commodity_id)
        return self.state.inventory[location_id][commodity_id]

    def availability_modifier(self, location_id: str, commodity_id: str) -> float:
        return self._location(location_id).modifier_for(commodity_id)

    def visible_commodities(self) -> List[G.Commodity]:
        return [c for c in self.commodities.values() if c.tier <= self.state.revealed_tier]

    @property
    def active_system_state(self) -> Optional[G.SystemState]:
        if self.state.system_state_id is None:
            return None
        return self.system_states.get(self.state.system_state_id)

    # ── derived quantities ───────────────────────────────────────────────

    def local_baseline(self, location_id: str, commodity_id: str) -> float:
        """Galactic average shifted by the location's import/export modifier."""
        avg = self.state.galactic_averages.get(commodity_id, 0.0)
        modifier = self.availability_modifier(location_id, commodity_id)
        return avg + (1.0 - modifier) * avg * self.rules.local_price_mod_strength

    def baseline_stock(self, location_id: str, commodity_id: str) -> int:
        low, high = self._commodity(commodity_id).canonical_availability
        modifier = self.availability_modifier(location_id, commodity_id)
        return max(0, math.floor(skewed_random(low, high, self.random) * modifier))

    def target_stock(self, location_id: str, commodity_id: str, delay_buying: bool = True) -> float:
        """
        Mean availability scaled up by (delayed) player buying pressure.
        Selling pressure never lowers the target.
        """
        commodity = self._commodity(commodity_id)
        item = self.state.inventory[location_id][commodity_id]
        base_mean = commodity.mean_availability * self.availability_modifier(location_id, commodity_id)

        pressure = item.market_pressure
        if pressure > 0:
            pressure = 0.0
        if (delay_buying and pressure < 0
                and self.state.day < item.last_player_interaction_timestamp + self.rules.pressure_delay_days):
            pressure = 0.0
        adaptation = 1 - min(0.5, pressure * 0.5)
        return base_mean * adaptation

    # ── tick ─────────────────────────────────────────────────────────────

    def advance_week(self, day: Optional[int] = None) -> None:
        """Run one weekly tick on ``day`` (default: ``days_per_tick`` after the current day)."""
        if day is None:
            day = self.state.day + self.rules.days_per_tick
        if day < self.state.day:
            raise ValueError(f"cannot tick day {day}, market is already at day {self.state.day}")
        self.state.day = day
        for behavior in self.behaviors:
            behavior.tick(self, day, self.random)

    def set_revealed_tier(self, tier: int) -> None:
        if tier < 1:
            raise ValueError(f"revealed tier must be >= 1, got {tier}")
        self.state.revealed_tier = tier

    # ── player trades ────────────────────────────────────────────────────

    def record_transaction(self, location_id: str, commodity_id: str, quantity: float,
                           trade_type: TradeType) -> None:
        """Market impact of a completed player trade: pressure plus a price lock."""
        item = self._record(location_id, commodity_id)
        commodity = self.commodities[commodity_id]
        if trade_type not in ("buy", "sell"):
            raise ValueError(f"trade type must be 'buy' or 'sell', got {trade_type!r}")
        if quantity < 0:
            raise ValueError(f"quantity must be >= 0, got {quantity}")

        availability_max = commodity.canonical_availability[1] or DEFAULT_AVAILABILITY_MAX
        pressure_change = quantity / availability_max * commodity.tier / 10
        if trade_type == "buy":
            item.market_pressure -= pressure_change
        else:
            item.market_pressure += pressure_change

        day = self.state.day
        day_of_year = (day - 1) % DAYS_PER_YEAR + 1
        low, high = LOCK_FIRST_HALF if day_of_year <= 182 else LOCK_SECOND_HALF
        item.price_lock_end_day = day + self.random.randint(low, high)
        item.last_player_interaction_timestamp = day
        logger.debug("Day %d: %s %s x%s at %s, pressure %.4f, locked until day %d",
                     day, trade_type, commodity_id, quantity, location_id,
                     item.market_pressure, item.price_lock_end_day)

    def check_depletion(self, location_id: str, commodity_id: str, stock_before_buy: float) -> bool:
        """
        Flag a market buy-out. Only counts when the emptied stock was a real
        share of the target and the yearly cooldown has passed.
        """
        item = self._record(location_id, commodity_id)
        target = max(1.0, self.target_stock(location_id, commodity_id, delay_buying=False))
        day = self.state.day
        if (stock_before_buy >= target * self.rules.depletion_threshold
                and day > item.depletion_bonus_day + self.rules.depletion_bonus_cooldown_days):
            item.is_depleted = True
            item.depletion_day = day
            item.depletion_bonus_day = day
            logger.info("Day %d: %s depleted at %s", day, commodity_id, location_id)
            return True
        return False

    def execute_trade(self, location_id: str, commodity_id: str, quantity: float,
                      trade_type: TradeType) -> None:
        """Market side of a player trade: stock change, depletion, impact."""
        item = self._record(location_id, commodity_id)
        if quantity <= 0:
            raise ValueError(f"quantity must be > 0, got {quantity}")
        if trade_type == "buy":
            if quantity > item.quantity:
                raise G.InsufficientStockError(location_id, commodity_id, quantity, item.quantity)
            stock_before = item.quantity
            item.quantity -= quantity
            if item.quantity <= 0:
                item.quantity = 0.0
                self.check_depletion(location_id, commodity_id, stock_before)
        elif trade_type == "sell":
            item.quantity += quantity
        self.record_transaction(location_id, commodity_id, quantity, trade_type)

    # ── external flags ───────────────────────────────────────────────────

    def set_hover(self, location_id: str, commodity_id: str, until_day: int) -> None:
        self._record(location_id, commodity_id).hover_until_day = until_day

    def start_rival_arbitrage(self, location_id: str, commodity_id: str, end_day: int) -> None:
        item = self._record(location_id, commodity_id)
        item.rival_arbitrage.is_active = True
        item.rival_arbitrage.end_day = end_day

    # ── read API ─────────────────────────────────────────────────────────

    def get_price(self, location_id: str, commodity_id: str) -> int:
        self._record(location_id, commodity_id)
        return self.state.prices[location_id][commodity_id]

    def get_galactic_average(self, commodity_id: str) -> float:
        self._commodity(commodity_id)
        return self.state.galactic_averages[commodity_id]

    def get_inventory(self, location_id: str, commodity_id: str) -> G._InventoryRecord:
        return self._record(location_id, commodity_id).model_copy(deep=True)

    def get_price_history(self, location_id: str, commodity_id: str) -> List[G._PriceSample]:
        self._record(location_id, commodity_id)
        history = self.state.price_history.get(location_id, {}).get(commodity_id, [])
        return [sample.model_copy() for sample in history]


# -----------------------------------
# Persistence of the in-memory state
# -----------------------------------

def save_state(engine: MarketEngine, path: Path) -> None:
    path.write_text(engine.state.model_dump_json(), encoding="utf-8")


def load_state(engine: MarketEngine, path: Path) -> None:
    """Replace the engine's state with a saved one that covers its whole catalog."""
    state = G._MarketState.model_validate_json(path.read_text(encoding="utf-8"))
    for table in (state.prices, state.inventory):
        for location_id, goods in table.items():
            if location_id not in engine.locations:
                raise G.UnknownLocationError(location_id)
            for commodity_id in goods:
                if commodity_id not in engine.commodities:
                    raise G.UnknownCommodityError(commodity_id)
    for commodity_id in state.galactic_averages:
        if commodity_id not in engine.commodities:
            raise G.UnknownCommodityError(commodity_id)

    for commodity_id in engine.commodities:
        if commodity_id not in state.galactic_averages:
            raise G.MarketDataError(f"{path}: no galactic average for {commodity_id!r}")
    for location_id in engine.locations:
        for commodity_id in engine.commodities:
            if (commodity_id not in state.prices.get(location_id, {})
                    or commodity_id not in state.inventory.get(location_id, {})):
                raise G.MarketDataError(f"{path}: no market record for {commodity_id!r} at {location_id!r}")
    if state.system_state_id is not None and state.system_state_id not in engine.system_states:
        raise G.MarketDataError(f"{path}: unknown system state {state.system_state_id!r}")
    engine.state = state


# -----------------------------------
# Main Simulation Loop
# -----------------------------------

def main(weeks: int = 1, seed: int = 0, tier: Optional[int] = None,
         content: Optional[Path] = None, state_path: Optional[Path] = None) -> MarketEngine:
    """Run the market for a number of weeks using the given RNG seed."""
    registry = load_registry(content)
    engine = MarketEngine.from_registry(registry, seed=seed, revealed_tier=tier)
    if state_path and state_path.exists():
        load_state(engine, state_path)
        logger.info("Resumed market state at day %d from %s", engine.state.day, state_path)

    for _ in range(weeks):
        engine.advance_week()

    for location_id in engine.locations:
        snapshot = ", ".join(
            f"{c.id}: {engine.get_price(location_id, c.id)}" for c in engine.visible_commodities()
        )
        logger.info("Day %d %s | %s", engine.state.day, location_id, snapshot)

    if state_path:
        save_state(engine, state_path)
    return engine


if __name__ == "__main__":
    import argparse
    from market_logging import configure_logging

    parser = argparse.ArgumentParser(description="Run the commodity market simulation")
    parser.add_argument("--weeks", type=int, default=10, help="Number of weekly ticks to run")
    parser.add_argument("--seed", type=int, default=0, help="RNG seed for deterministic runs")
    parser.add_argument("--tier", type=int, default=None, help="Highest revealed commodity tier")
    parser.add_argument("--content", type=Path, default=None, help="Content directory")
    parser.add_argument("--state", type=Path, default=None, help="JSON file to resume from and save to")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)
    main(weeks=args.weeks, seed=args.seed, tier=args.tier, content=args.content, state_path=args.state)
