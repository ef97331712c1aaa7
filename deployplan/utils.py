import json
from pathlib import Path
from typing import Dict, Optional

import yaml

from deployplan.constants import ARTIFACTS_DIR, LEDGER_SUFFIX


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


def get_artifact_filepath(config: Dict) -> Optional[Path]:
    """Returns the filepath of the registry file the plan publishes to, if any."""
    artifact_config = config.get("artifacts")
    if not artifact_config:
        return None
    artifact_dir = Path(artifact_config.get("dir", ARTIFACTS_DIR))
    filename = artifact_config.get("filename")
    if not filename:
        raise ValueError("artifact filename is not set in plan file.")
    return artifact_dir / filename


def get_ledger_filepath(plan_name: str) -> Path:
    """Returns the default ledger location for a named plan."""
    return ARTIFACTS_DIR / f"{plan_name}{LEDGER_SUFFIX}"
