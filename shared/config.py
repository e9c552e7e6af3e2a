"""
Application configuration.

Values come from ``MELODYSTREAM_*`` environment variables (a ``.env`` file in
the working directory is loaded first), falling back to shared constants.
"""

import json
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from shared.constants import (
    DEFAULT_API_URL,
    DEFAULT_DATABASE_PATH,
    DEFAULT_HOST,
    DEFAULT_NETWORK_TIMEOUT,
    DEFAULT_PORT,
    DEFAULT_SECRET_KEY,
    DEFAULT_VOLUME,
)

ENV_PREFIX = "MELODYSTREAM_"


@dataclass
class AppConfig:
    """
    Settings shared by the API server and the player client.
    """
    database_path: str = DEFAULT_DATABASE_PATH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    secret_key: str = DEFAULT_SECRET_KEY
    api_url: str = DEFAULT_API_URL
    network_timeout: int = DEFAULT_NETWORK_TIMEOUT
    default_volume: int = DEFAULT_VOLUME
    log_file: Optional[str] = None
    debug: bool = False

    @property
    def resolved_database_path(self) -> Path:
        return Path(self.database_path).expanduser()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary, hiding the secret key."""
        data = asdict(self)
        data['secret_key'] = "***"
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppConfig':
        """Create AppConfig from dictionary, coercing types and filtering unknown keys."""
        converted: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            value = data[f.name]
            if f.type in (int, 'int'):
                value = int(value)
            elif f.type in (bool, 'bool'):
                value = _parse_bool(value)
            converted[f.name] = value
        return cls(**converted)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'AppConfig':
        """Load settings from the environment (and ``.env``)."""
        load_dotenv(env_file)
        data = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is not None:
                data[f.name] = raw
        return cls.from_dict(data)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
