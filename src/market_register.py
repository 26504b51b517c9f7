# src/market_register.py
"""
Scans the content source folders (the local `content/` directory plus the
mod folders under `content_custom/`), loads all JSON definitions into the
Pydantic models of market_objects, and collects them in a registry.
Ignores any subfolder named "meta" or starting with a dot.
Models with an `id` field are stored in a dict by id, later sources overriding
earlier ones; other models (EngineRules) are stored in lists.
"""
import json
import logging
import inspect
from pathlib import Path
from typing import List, Dict, Optional, Union

from pydantic import BaseModel, ValidationError

import market_objects as G

logger = logging.getLogger(__name__)

# Hard-coded content source directories (relative to project root)
MOD_PATHS = [
    Path(__file__).resolve().parent.parent / "content_custom" / "modA",
    Path(__file__).resolve().parent.parent / "content_custom" / "modB",
]
# Local content directory
LOCAL_CONTENT = Path(__file__).resolve().parent.parent / "content"

Registry = Dict[str, Union[List[BaseModel], Dict[str, BaseModel]]]


class ContentError(G.MarketDataError):
    """A content file could not be parsed into its model."""


def is_valid_folder(path: Path) -> bool:
    return (
        path.is_dir()
        and not path.name.startswith('.')
        and path.name != 'meta'
    )


def load_models() -> Dict[str, type]:
    """
    Collect the public Pydantic content models from market_objects.
    Returns a mapping of model_name -> class. Classes starting with an
    underscore are engine state, not content, and are skipped.
    """
    models: Dict[str, type] = {}
    for name, cls in inspect.getmembers(G, inspect.isclass):
        if issubclass(cls, BaseModel) and cls is not BaseModel and not name.startswith("_"):
            models[name] = cls
    return models


def register_content(folders: List[Path]) -> Registry:
    """
    Load all JSON files in each valid subfolder of the given folders,
    parse them with the corresponding Pydantic model based on folder name,
    and collect them into a registry dict:
      - For models with an `id` field: { model_name: { id: instance, ... } }
      - For others: { model_name: [instance, ...] }
    Raises ContentError on the first file that fails validation.
    """
    models = load_models()
    id_models = {name for name, cls in models.items() if 'id' in cls.model_fields}

    registry: Registry = {}
    for name in models:
        if name in id_models:
            registry[name] = {}
        else:
            registry[name] = []

    for folder in folders:
        if not folder.exists():
            continue
        for sub in sorted(folder.iterdir()):
            if not is_valid_folder(sub):
                continue
            model_name = sub.name
            model_cls = models.get(model_name)
            if model_cls is None:
                logger.debug("Skipping unknown content folder %s", sub)
                continue
            for json_file in sorted(sub.glob("*.json")):
                try:
                    data = json.loads(json_file.read_text(encoding="utf-8"))
                    instance = model_cls.model_validate(data)
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.error("Error parsing %s: %s", json_file, e)
                    raise ContentError(f"{json_file}: {e}") from e
                if model_name in id_models:
                    key = getattr(instance, 'id')
                    if key in registry[model_name]:
                        logger.debug("%s %r overridden by %s", model_name, key, json_file)
                    registry[model_name][key] = instance
                else:
                    registry[model_name].append(instance)

    return registry


def rules_from_registry(registry: Registry) -> G.EngineRules:
    """The last EngineRules definition wins; defaults when none was loaded."""
    rules = registry.get("EngineRules") or []
    return rules[-1] if rules else G.EngineRules()


def validate_registry(registry: Registry) -> None:
    """
    Check cross references between catalogs so that a bad id fails at load
    time instead of silently degrading during the simulation.
    """
    commodities: Dict[str, G.Commodity] = registry.get("Commodity", {})  # type: ignore
    locations: Dict[str, G.Location] = registry.get("Location", {})  # type: ignore
    states: Dict[str, G.SystemState] = registry.get("SystemState", {})  # type: ignore

    if not commodities:
        raise G.MarketDataError("No commodities loaded")
    if not locations:
        raise G.MarketDataError("No locations loaded")

    for loc in locations.values():
        for commodity_id in loc.availability_modifier:
            if commodity_id not in commodities:
                raise G.UnknownCommodityError(commodity_id)
    for state in states.values():
        for commodity_id in state.modifiers.commodity:
            if commodity_id not in commodities:
                raise G.UnknownCommodityError(commodity_id)


def load_registry(content_dir: Optional[Path] = None) -> Registry:
    """Load and validate the content catalogs; mods override local content."""
    sources = [content_dir or LOCAL_CONTENT] + MOD_PATHS
    registry = register_content(sources)
    validate_registry(registry)
    for model_name, collection in registry.items():
        if collection:
            logger.info("Loaded %d %s entries.", len(collection), model_name)
    return registry


def main():
    from market_logging import configure_logging

    configure_logging()
    load_registry()


if __name__ == "__main__":
    main()
