# src/market_schema.py
"""
Generates JSON Schema files for the content models in src/market_objects.py,
placing each schema under content/meta/<ClassName>/schema.json so content
authors can validate commodity, location and system state files.
"""
import json
import logging
from pathlib import Path
from typing import List, Optional

from market_register import LOCAL_CONTENT, load_models

logger = logging.getLogger(__name__)


def write_schemas(content_dir: Optional[Path] = None) -> List[Path]:
    output_base = (content_dir or LOCAL_CONTENT) / "meta"
    output_base.mkdir(parents=True, exist_ok=True)

    written: List[Path] = []
    for name, cls in sorted(load_models().items()):
        schema_dict = cls.model_json_schema()

        model_dir = output_base / name
        model_dir.mkdir(parents=True, exist_ok=True)

        schema_file = model_dir / "schema.json"
        with open(schema_file, "w", encoding="utf-8") as f:
            json.dump(schema_dict, f, indent=2)

        logger.info("Wrote schema for '%s' to %s", name, schema_file)
        written.append(schema_file)
    return written


def main():
    from market_logging import configure_logging

    configure_logging()
    write_schemas()


if __name__ == "__main__":
    main()
