# config.py
# Paths, defaults, config loading

import copy
import os
from typing import Any, Optional

import yaml

from .errors import ConfigError

# Project root directory (src/anpr_stream/config.py -> project root)
BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Headless mode (Docker without display): no preview window
HEADLESS = os.environ.get("HEADLESS", "0") == "1" or os.environ.get("DISPLAY_OFF", "0") == "1"

CONFIG_PATH = os.environ.get("ANPR_CONFIG", os.path.join(BASE_DIR, "config", "config.yaml"))

REQUIRED_KEYS = ("camera.url", "models.plate_detector")

DEFAULTS = {
    "device": "cpu",
    "camera": {
        "url": None,
        "reconnect_delay": 3.0,
        "stop_timeout": 1.0,
    },
    "models": {
        "plate_detector": None,
        "input_size": 640,
    },
    "detection": {
        "confidence_threshold": 0.5,
        "min_aspect_ratio": 1.5,
        "max_aspect_ratio": 5.5,
    },
    "ocr": {
        "tesseract_cmd": "",
        "psm": 7,
        "upscale": 2.0,
    },
    "plate": {
        "max_length": 10,
        "grammar": "standard",   # standard | simple
        "region_codes": None,    # None = built-in list
        "substitutions": None,   # None = built-in OCR confusion table
    },
    "stabilization": {
        "history_size": 10,
        "bucket_factor": 20,
    },
    "live": {
        "interval": 0.2,
        "show_window": False,   # preview window in `watch`, never when HEADLESS
    },
    "enrichment": {
        "mode": "live",          # live | deferred
    },
    "lookup": {
        "mode": "mock",          # mock | http
        "url": "",
        "api_key": "",
        "timeout": 5.0,
        "mock_delay": 0.5,
    },
    "batch": {
        "request_delay": 0.5,
    },
    "log": {
        "basic_file": "outputs/detection_log.csv",
        "enriched_file": None,   # None = enriched_<basic_file>
    },
    "output": {
        "dir": "outputs",
        "input_folder": "outputs/input",
        "output_folder": "outputs/output",
        "save_images": True,
    },
    "api": {
        "host": "0.0.0.0",
        "port": 8000,
        "jpeg_quality": 75,
    },
}


def load_yaml(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _merge(base: dict, override: dict) -> dict:
    """Recursive dict merge, override wins."""
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def get(cfg: dict, dotted: str, default: Any = None) -> Any:
    """cfg lookup by dotted key: get(cfg, "camera.url")"""
    node: Any = cfg
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def require(cfg: dict, dotted: str) -> Any:
    value = get(cfg, dotted)
    if value is None or value == "":
        raise ConfigError(f"Missing required config key: {dotted}")
    return value


def resolve_path(cfg: dict, path: str) -> str:
    """Relative paths are resolved against the project root of the loaded config."""
    if os.path.isabs(path):
        return path
    return os.path.join(cfg.get("_root", BASE_DIR), path)


def enriched_log_path(cfg: dict) -> str:
    explicit = get(cfg, "log.enriched_file")
    if explicit:
        return resolve_path(cfg, explicit)
    basic = resolve_path(cfg, require(cfg, "log.basic_file"))
    folder, name = os.path.split(basic)
    return os.path.join(folder, f"enriched_{name}")


def show_window(cfg: dict, requested: bool = False) -> bool:
    """Preview window on request or via live.show_window; HEADLESS always wins."""
    return (requested or bool(get(cfg, "live.show_window", False))) and not HEADLESS


def load_config(path: Optional[str] = None, validate: bool = True) -> dict:
    """Load config.yaml over DEFAULTS. Raises ConfigError on any problem."""
    path = path or CONFIG_PATH
    if not os.path.isfile(path):
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = load_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")

    cfg = _merge(DEFAULTS, data)

    # config/config.yaml -> project root is the parent of config/
    config_dir = os.path.dirname(os.path.abspath(path))
    if os.path.basename(config_dir) == "config":
        cfg["_root"] = os.path.dirname(config_dir)
    else:
        cfg["_root"] = config_dir

    if validate:
        for key in REQUIRED_KEYS:
            require(cfg, key)
        if get(cfg, "plate.grammar") not in ("standard", "simple"):
            raise ConfigError(f"Unknown plate.grammar: {get(cfg, 'plate.grammar')}")
        if get(cfg, "enrichment.mode") not in ("live", "deferred"):
            raise ConfigError(f"Unknown enrichment.mode: {get(cfg, 'enrichment.mode')}")

    return cfg


def print_gpu_info():
    """Print GPU information."""
    import torch
    if torch.cuda.is_available():
        gpu_name = torch.cuda.get_device_name(0)
        gpu_mem = torch.cuda.get_device_properties(0).total_memory / 1024**3
        print(f"GPU: {gpu_name} ({gpu_mem:.1f} GB)")
    else:
        print("CUDA not available, using CPU")
