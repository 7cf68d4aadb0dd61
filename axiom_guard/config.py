"""
Axiom Guard - Configuration
===========================

Defaults live here; a YAML file can override any of them under an
``axiom_guard`` section:

    axiom_guard:
      policy_path: policies/cda.yaml
      server:
        port: 9000
"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .pipeline import DEFAULT_DISCLOSURE


DEFAULT_CONFIG: Dict[str, Any] = {
    "disclosure": DEFAULT_DISCLOSURE,
    "mask_width": 1000,
    "mask_max_active": 10,
    "mask_chars_per_active": 100,
    "policy_path": None,          # None = built-in CDA-v1.0
    "max_decision_history": 1000,
    "log_decisions": True,
    "server": {
        "host": "127.0.0.1",
        "port": 8081,
    },
    "bridge": {
        "url": None,
        "timeout": 1.0,
    },
}


def merge_config(config: Dict, overrides: Optional[Dict]) -> Dict:
    """Merge overrides into config in place. Nested sections merge key-wise."""
    for key, value in (overrides or {}).items():
        if isinstance(config.get(key), dict) and isinstance(value, dict):
            config[key] = {**config[key], **value}
        else:
            config[key] = value
    return config


def load_config(config_path: Optional[Path] = None) -> Dict:
    """Load configuration from yaml file. Missing file means defaults."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path is None:
        return config

    config_path = Path(config_path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            file_config = yaml.safe_load(f)
        if file_config and "axiom_guard" in file_config:
            merge_config(config, file_config["axiom_guard"])

    return config
