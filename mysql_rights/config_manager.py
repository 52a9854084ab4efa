import logging
import os
from pathlib import Path
import yaml
from .path_config import BASE_DIR, CONFIG_DIR as DEFAULT_CONFIG_DIR, LOG_DIR

CONFIG_FILE_ENV = os.getenv("MYSQL_RIGHTS_CONFIG_FILE")
if CONFIG_FILE_ENV:
    CONFIG_FILE = Path(CONFIG_FILE_ENV)
    if not CONFIG_FILE.is_absolute():
        CONFIG_FILE = BASE_DIR / CONFIG_FILE
    CONFIG_DIR = CONFIG_FILE.parent
else:
    CONFIG_DIR = DEFAULT_CONFIG_DIR
    CONFIG_FILE = CONFIG_DIR / "config.yml"

DEFAULT_CONFIG = {
    "log_path": str(LOG_DIR / "mysql_rights.log"),
    "log_level": "INFO",
    "log_output": True,
    "mysql_bin": "mysql",
    "mysqladmin_bin": "mysqladmin",
    "db_host": "localhost",
    "db_user": "root",
    "defaults_file": None,
    "identified_by": True,
    "allowed_paths": ["/bin", "/usr/bin", "/usr/local/bin"],
    "command_timeout": 60,
    "prerequisite_timeout": 300,
    "max_workers": 4,
}

logger = logging.getLogger(__name__)
logger.propagate = True


def _resolve_paths(result: dict) -> dict:
    log_path = result.get('log_path')
    if log_path:
        log_path_path = Path(log_path)
        if not log_path_path.is_absolute():
            log_path_path = BASE_DIR / log_path_path
        result['log_path'] = str(log_path_path)
    return result


def load_config(path=None):
    """Load the YAML configuration merged over :data:`DEFAULT_CONFIG`.

    A missing file is created with the defaults. A file that fails to parse
    is logged and replaced by the defaults.
    """
    config_file = Path(path) if path else CONFIG_FILE
    config_dir = config_file.parent if path else CONFIG_DIR
    if not config_file.exists():
        config_dir.mkdir(parents=True, exist_ok=True)
        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(DEFAULT_CONFIG, f, allow_unicode=True)
        return _resolve_paths(DEFAULT_CONFIG.copy())
    with open(config_file, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.warning("Failed to parse %s: %s", config_file, e)
            with open(config_file, 'w', encoding='utf-8') as fw:
                yaml.safe_dump(DEFAULT_CONFIG, fw, allow_unicode=True)
            return _resolve_paths(DEFAULT_CONFIG.copy())
    if not isinstance(data, dict):
        raise ValueError(f"{config_file} must contain a mapping")
    return _resolve_paths({**DEFAULT_CONFIG, **data})


def save_config(data, path=None):
    config_file = Path(path) if path else CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, allow_unicode=True)


def _positive_number(cfg: dict, key: str, errors: list, allow_none: bool = True) -> None:
    value = cfg.get(key)
    if value is None and allow_none:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        errors.append(f"'{key}' must be a positive number")


def validate_config(cfg: dict) -> None:
    """Validates configuration structure and values.

    Raises ValueError with collected errors when invalid. Emits warnings for
    non-fatal issues such as absolute log paths outside ``BASE_DIR``.
    """

    errors = []

    if "db_password" in cfg:
        errors.append("'db_password' must not be stored in the config file; use MYSQL_RIGHTS_DB_PASSWORD or keyring")

    allowed = cfg.get("allowed_paths")
    if not isinstance(allowed, list) or not allowed:
        errors.append("'allowed_paths' must be a non-empty list")
    else:
        for entry in allowed:
            if not isinstance(entry, str) or not os.path.isabs(entry):
                errors.append(f"allowed path is not absolute: {entry!r}")

    for key in ("mysql_bin", "mysqladmin_bin"):
        if not isinstance(cfg.get(key), str) or not cfg.get(key):
            errors.append(f"'{key}' must be a non-empty string")

    _positive_number(cfg, "command_timeout", errors)
    _positive_number(cfg, "prerequisite_timeout", errors)

    workers = cfg.get("max_workers")
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        errors.append("'max_workers' must be an integer >= 1")

    level = cfg.get("log_level", "INFO")
    if not isinstance(getattr(logging, str(level).upper(), None), int):
        errors.append(f"Unknown log_level: {level}")

    log_path = cfg.get("log_path")
    if log_path:
        p = Path(log_path)
        if p.is_absolute() and not str(p).startswith(str(BASE_DIR)):
            logger.warning("log_path outside BASE_DIR: %s", log_path)

    if errors:
        raise ValueError("\n".join(errors))
