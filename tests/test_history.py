import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import market_sim as sim  # type: ignore
import market_objects as G  # type: ignore


def setup_engine(cap=10):
    goods = [
        G.Commodity(id="ice", tier=1, base_price_range=(15, 80), canonical_availability=(80, 150)),
        G.Commodity(id="hydro", tier=2, base_price_range=(850, 2400), canonical_availability=(40, 70)),
    ]
    return sim.MarketEngine(
        commodities=goods,
        locations=[G.Location(id="earth"), G.Location(id="luna")],
        rules=G.EngineRules(price_history_length=cap),
        seed=9,
    )


def test_history_is_capped_fifo():
    engine = setup_engine(cap=10)
    for day in range(1, 61):
        engine.advance_week(day=day)
    for location_id in ("earth", "luna"):
        history = engine.get_price_history(location_id, "ice")
        assert len(history) == 10
        assert history[0].day == 51
        assert [s.day for s in history] == list(range(51, 61))


def test_history_tracks_current_price():
    engine = setup_engine()
    engine.advance_week(day=8)
    last = engine.get_price_history("earth", "hydro")[-1]
    assert last.day == 8
    assert last.price == engine.get_price("earth", "hydro")


def test_same_day_records_overwrite():
    engine = setup_engine()
    engine.advance_week(day=8)
    engine.state.prices["earth"]["ice"] = 77
    sim.record_price_history(engine, "earth")
    history = engine.get_price_history("earth", "ice")
    assert len(history) == 1
    assert history[0].price == 77


def test_hidden_tiers_are_not_recorded():
    engine = setup_engine()
    engine.set_revealed_tier(1)
    engine.advance_week(day=8)
    assert len(engine.get_price_history("earth", "ice")) == 1
    assert engine.get_price_history("earth", "hydro") == []


def test_history_copy_is_detached():
    engine = setup_engine()
    engine.advance_week(day=8)
    copy = engine.get_price_history("earth", "ice")
    copy[0].price = -1
    copy.clear()
    assert engine.get_price_history("earth", "ice")[0].price >= 1


def test_history_behavior_records_without_price_pass():
    goods = [G.Commodity(id="ice", tier=1, base_price_range=(15, 80), canonical_availability=(80, 150))]
    engine = sim.MarketEngine(
        commodities=goods,
        locations=[G.Location(id="earth")],
        seed=2,
        behaviors=[sim.HistoryBehavior()],
    )
    engine.advance_week(day=8)
    engine.advance_week(day=15)
    history = engine.get_price_history("earth", "ice")
    assert [s.day for s in history] == [8, 15]
    # no price pass, so the price stays where it was seeded
    assert history[0].price == history[1].price == engine.get_price("earth", "ice")
