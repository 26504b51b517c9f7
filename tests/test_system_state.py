import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import market_sim as sim  # type: ignore
import market_objects as G  # type: ignore


def setup_engine(states, seed=0):
    good = G.Commodity(id="ice", tier=1, base_price_range=(15, 80), canonical_availability=(80, 150))
    return sim.MarketEngine(
        commodities=[good],
        locations=[G.Location(id="earth")],
        system_states=states,
        seed=seed,
    )


def test_no_state_before_first_tick():
    engine = setup_engine([G.SystemState(id="neutral", duration=28)])
    assert engine.active_system_state is None


def test_state_lasts_for_its_duration():
    engine = setup_engine([G.SystemState(id="neutral", duration=28)])
    behavior = sim.SystemStateBehavior()
    behavior.tick(engine, 5, engine.random)
    assert engine.active_system_state.id == "neutral"
    assert engine.state.system_state_expiration_day == 33

    # still active on the expiration day itself
    behavior.tick(engine, 33, engine.random)
    assert engine.state.system_state_expiration_day == 33
    behavior.tick(engine, 34, engine.random)
    assert engine.state.system_state_expiration_day == 62


def test_selection_covers_catalog():
    states = [G.SystemState(id=f"s{i}", duration=1) for i in range(4)]
    engine = setup_engine(states, seed=12)
    seen = set()
    for day in range(1, 200, 2):
        engine.advance_week(day=day)
        seen.add(engine.active_system_state.id)
    assert seen == {"s0", "s1", "s2", "s3"}


def test_empty_catalog_leaves_no_state():
    engine = setup_engine([])
    engine.advance_week(day=8)
    assert engine.active_system_state is None


def test_unknown_commodity_in_state_is_rejected():
    bad = G.SystemState(
        id="war",
        modifiers=G.StateModifiers(commodity={"plasma": G.CommodityModifiers(price=2.0)}),
    )
    with pytest.raises(G.UnknownCommodityError) as exc:
        setup_engine([bad])
    assert exc.value.commodity_id == "plasma"


def test_zero_volatility_multiplier_freezes_price():
    calm = G.SystemState(id="calm", duration=999,
                         modifiers=G.StateModifiers(commodity={"ice": G.CommodityModifiers(volatility_mult=0.0)}))
    engine = setup_engine([calm])
    engine.rules = G.EngineRules(mean_reversion_strength=0.0)
    start = engine.get_price("earth", "ice")
    for day in range(1, 100, 7):
        engine.advance_week(day=day)
        assert engine.get_price("earth", "ice") == start


def test_same_seed_same_schedule():
    states = [G.SystemState(id=f"s{i}", duration=7) for i in range(5)]
    picks = []
    for _ in range(2):
        engine = setup_engine(states, seed=99)
        run = []
        for day in range(1, 120, 7):
            engine.advance_week(day=day)
            run.append(engine.state.system_state_id)
        picks.append(run)
    assert picks[0] == picks[1]
