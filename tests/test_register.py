import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import market_register as register  # type: ignore
import market_schema  # type: ignore
import market_sim as sim  # type: ignore
import market_objects as G  # type: ignore


def write(folder: Path, model: str, name: str, data) -> None:
    target = folder / model
    target.mkdir(parents=True, exist_ok=True)
    (target / f"{name}.json").write_text(json.dumps(data), encoding="utf-8")


def make_content(root: Path) -> Path:
    write(root, "Commodity", "ice", {
        "id": "ice", "tier": 1, "base_price_range": [15, 80], "canonical_availability": [80, 150],
    })
    write(root, "Commodity", "hydro", {
        "id": "hydro", "tier": 2, "base_price_range": [850, 2400], "canonical_availability": [40, 70],
    })
    write(root, "Location", "earth", {
        "id": "earth", "fuel_price": 250, "availability_modifier": {"hydro": 2.0},
    })
    write(root, "SystemState", "neutral", {"id": "neutral", "duration": 28})
    write(root, "EngineRules", "rules", {"price_history_length": 12})
    return root


def test_register_content_groups_by_model(tmp_path):
    registry = register.register_content([make_content(tmp_path)])
    assert set(registry["Commodity"]) == {"ice", "hydro"}
    assert registry["Location"]["earth"].modifier_for("hydro") == 2.0
    assert registry["Location"]["earth"].modifier_for("ice") == 1.0
    assert register.rules_from_registry(registry).price_history_length == 12


def test_meta_and_unknown_folders_are_ignored(tmp_path):
    make_content(tmp_path)
    write(tmp_path, "meta", "schema", {"not": "content"})
    write(tmp_path, "Spaceship", "x", {"id": "x"})
    registry = register.register_content([tmp_path])
    assert "Spaceship" not in registry


def test_later_sources_override_by_id(tmp_path):
    base = make_content(tmp_path / "base")
    mod = tmp_path / "mod"
    write(mod, "Commodity", "ice", {
        "id": "ice", "tier": 1, "base_price_range": [20, 90], "canonical_availability": [80, 150],
    })
    registry = register.register_content([base, mod])
    assert registry["Commodity"]["ice"].base_price_range == (20, 90)


def test_invalid_content_fails_fast(tmp_path):
    make_content(tmp_path)
    write(tmp_path, "Commodity", "broken", {
        "id": "broken", "tier": 0, "base_price_range": [15, 80], "canonical_availability": [80, 150],
    })
    with pytest.raises(register.ContentError):
        register.register_content([tmp_path])


def test_inverted_range_is_rejected(tmp_path):
    make_content(tmp_path)
    write(tmp_path, "Commodity", "odd", {
        "id": "odd", "tier": 1, "base_price_range": [80, 15], "canonical_availability": [80, 150],
    })
    with pytest.raises(register.ContentError):
        register.register_content([tmp_path])


def test_validate_registry_catches_unknown_commodity(tmp_path):
    make_content(tmp_path)
    write(tmp_path, "Location", "mars", {"id": "mars", "availability_modifier": {"plasma": 0.5}})
    registry = register.register_content([tmp_path])
    with pytest.raises(G.UnknownCommodityError):
        register.validate_registry(registry)


def test_validate_registry_requires_catalogs(tmp_path):
    write(tmp_path, "Commodity", "ice", {
        "id": "ice", "tier": 1, "base_price_range": [15, 80], "canonical_availability": [80, 150],
    })
    with pytest.raises(G.MarketDataError):
        register.validate_registry(register.register_content([tmp_path]))


def test_engine_from_registry(tmp_path):
    registry = register.load_registry(make_content(tmp_path))
    engine = sim.MarketEngine.from_registry(registry, seed=1)
    assert engine.rules.price_history_length == 12
    assert engine.state.revealed_tier == 2
    # default galactic average is the middle of the base price range
    assert engine.get_galactic_average("hydro") == 1625
    # exporter baseline: 1625 + (1 - 2) * 1625 * 0.5
    assert engine.get_price("earth", "hydro") == 813
    engine.advance_week()
    assert engine.state.day == 8


def test_bundled_content_loads():
    registry = register.load_registry()
    engine = sim.MarketEngine.from_registry(registry, revealed_tier=2)
    for _ in range(10):
        engine.advance_week()
    assert engine.active_system_state is not None


def test_write_schemas(tmp_path):
    written = market_schema.write_schemas(tmp_path)
    names = {p.parent.name for p in written}
    assert {"Commodity", "Location", "SystemState", "EngineRules"} <= names
    assert not any(name.startswith("_") for name in names)
    schema = json.loads((tmp_path / "meta" / "Commodity" / "schema.json").read_text(encoding="utf-8"))
    assert "base_price_range" in schema["properties"]
