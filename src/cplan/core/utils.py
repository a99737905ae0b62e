import datetime
import uuid
from pathlib import Path

import yaml


def load_yaml(path):
    """Read a YAML mapping; an empty file yields an empty dict."""
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {path}, got {type(data).__name__}")
    return data


def apply_overrides(config, cli_overrides=None):
    """
    Merge dot-notation overrides (``key1.key2=value``) into a config dict.

    Values are parsed as YAML scalars, so ``atlas.rho=0.3`` yields a float and
    ``simplify=true`` a bool. Returns the same dict, modified in place.
    """
    for override in cli_overrides or ():
        if "=" not in override:
            raise ValueError(f"Override must look like key=value, got: {override!r}")
        key, val = override.split("=", 1)
        keys = key.strip().split(".")
        d = config
        for k in keys[:-1]:
            d = d.setdefault(k, {})
        d[keys[-1]] = yaml.safe_load(val)
    return config


def load_config(config_file=None, cli_overrides=None):
    """
    Load a YAML config (if given) and merge CLI overrides into it.
    Returns the config dict and the config path used (or None).
    """
    config = {}
    if config_file is not None:
        config_file = Path(config_file)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")
        config = load_yaml(config_file)

    apply_overrides(config, cli_overrides)
    return config, (str(config_file) if config_file is not None else None)


def make_output_dir(script_name, base_output_dir=None):
    """
    Creates a timestamped output directory for the script run.
    Returns the path to the created output directory.
    """
    timestamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
    run_id = uuid.uuid4().hex[:6]
    out_base = Path(base_output_dir or "outputs") / script_name
    out_dir = out_base / f"{timestamp}-{run_id}"
    out_dir.mkdir(parents=True, exist_ok=False)
    return out_dir
