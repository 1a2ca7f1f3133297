import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Flat layout (no 'general' section) is accepted for short configs
    if "general" not in data:
        nested = {key: data.pop(key) for key in ("catalog", "relay", "retry") if key in data}
        data = {"general": data, **nested}

    return AppConfig(**data)
