"""
Configuration loader for the AutoDialer service.
Reads settings from a YAML file with environment variable substitution.

``${VAR}`` is replaced by the environment value (left untouched when unset);
``${VAR:-default}`` falls back to ``default``.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml


class TelephonyProvider(str, Enum):
    TWILIO = "twilio"


@dataclass
class TelephonyConfig:
    """Telephony provider configuration."""
    provider: TelephonyProvider = TelephonyProvider.TWILIO
    account_sid: str = ""
    auth_token: str = ""
    phone_number: str = ""                    # caller id used as From
    ring_timeout_s: int = 30


@dataclass
class DialerConfig:
    numbers_path: str = "./numbers.json"
    auto_next_default: bool = True
    answer_message: str = "Connecting your call."
    status_callback_path: str = "/webhooks/status"
    answer_path: str = "/twiml/outbound?type=autodialer"


@dataclass
class Settings:
    app_name: str = "AutoDialer"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3001
    public_base_url: str = "http://localhost:3001"
    telephony: TelephonyConfig = field(default_factory=TelephonyConfig)
    dialer: DialerConfig = field(default_factory=DialerConfig)

    @property
    def status_callback_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}{self.dialer.status_callback_path}"

    @property
    def answer_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}{self.dialer.answer_path}"


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} and ${VAR_NAME:-default} patterns."""
    pattern = re.compile(r'\$\{(\w+)(?::-([^}]*))?\}')
    def replacer(match):
        var_name, default = match.group(1), match.group(2)
        if default is not None:
            return os.environ.get(var_name) or default
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return default


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "AUTODIALER_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = _as_bool(raw.get("debug"), settings.debug)
        settings.host = raw.get("host", settings.host)
        settings.port = int(raw.get("port", settings.port))
        settings.public_base_url = raw.get("public_base_url", settings.public_base_url)

        if "telephony" in raw:
            tel = raw["telephony"] or {}
            settings.telephony = TelephonyConfig(
                provider=TelephonyProvider(tel.get("provider", "twilio")),
                account_sid=tel.get("account_sid", ""),
                auth_token=tel.get("auth_token", ""),
                phone_number=tel.get("phone_number", ""),
                ring_timeout_s=int(tel.get("ring_timeout_s", 30)),
            )

        if "dialer" in raw:
            d = raw["dialer"] or {}
            defaults = DialerConfig()
            settings.dialer = DialerConfig(
                numbers_path=d.get("numbers_path", defaults.numbers_path),
                auto_next_default=_as_bool(d.get("auto_next_default"), defaults.auto_next_default),
                answer_message=d.get("answer_message", defaults.answer_message),
                status_callback_path=d.get("status_callback_path", defaults.status_callback_path),
                answer_path=d.get("answer_path", defaults.answer_path),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
