"""Runtime settings and logging setup."""
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

DEFAULT_DB_PATH = str(Path.home() / ".edustreak" / "edustreak.db")
DEFAULT_CONFIG_PATH = Path.home() / ".edustreak" / "config.yaml"
ENV_PREFIX = "EDUSTREAK_"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class Settings:
    db_path: str = DEFAULT_DB_PATH
    regen_interval_minutes: int = 30
    lives_max: int = 5
    questions_per_quiz: int = 10
    pass_threshold_percent: int = 70
    cooldown_days: int = 1
    lock_timeout_seconds: float = 10.0
    log_level: str = "WARNING"


def _coerce(value: str, current):
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def _convert(name: str, value, current):
    """Bring a YAML or env value to the type of the default it replaces."""
    if isinstance(value, str):
        try:
            return _coerce(value, current)
        except ValueError:
            raise ValueError(f"Setting {name} expects {type(current).__name__}, got {value!r}") from None
    if isinstance(current, float) and isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if type(value) is not type(current):
        raise ValueError(f"Setting {name} expects {type(current).__name__}, got {value!r}")
    return value


def _validate(settings: Settings) -> Settings:
    if settings.regen_interval_minutes <= 0:
        raise ValueError("regen_interval_minutes must be positive")
    if settings.lives_max < 0:
        raise ValueError("lives_max cannot be negative")
    if settings.questions_per_quiz <= 0:
        raise ValueError("questions_per_quiz must be positive")
    if not 0 <= settings.pass_threshold_percent <= 100:
        raise ValueError("pass_threshold_percent must be between 0 and 100")
    if settings.cooldown_days < 0:
        raise ValueError("cooldown_days cannot be negative")
    if settings.lock_timeout_seconds <= 0:
        raise ValueError("lock_timeout_seconds must be positive")
    return settings


def load_settings(path: str | Path | None = None, environ: dict | None = None) -> Settings:
    """Build settings from defaults, an optional YAML file, then EDUSTREAK_* env vars.

    Unknown YAML keys are ignored with a warning so an old config file never
    blocks startup.
    """
    settings = Settings()
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        data = yaml.safe_load(config_path.read_text()) or {}
        known = {f.name for f in fields(Settings)}
        for key, value in data.items():
            if key not in known:
                logging.getLogger(__name__).warning("Ignoring unknown setting %r in %s", key, config_path)
                continue
            setattr(settings, key, _convert(key, value, getattr(settings, key)))

    env = os.environ if environ is None else environ
    for f in fields(Settings):
        raw = env.get(ENV_PREFIX + f.name.upper())
        if raw is not None:
            setattr(settings, f.name, _convert(f.name, raw, getattr(settings, f.name)))
    return _validate(settings)


def configure_logging(level: str = "WARNING") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING), format=LOG_FORMAT)
