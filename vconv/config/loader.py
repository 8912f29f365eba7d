import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    # Single-string forms are accepted for list options
    for section, key in (("selection", "allowed_extensions"), ("selection", "copy_extensions"),
                         ("convert", "skip_video_codec_names"), ("convert", "x_args")):
        value = (data.get(section) or {}).get(key)
        if isinstance(value, str):
            data[section][key] = value.split(",") if key != "x_args" else value.split()

    return AppConfig(**data)
