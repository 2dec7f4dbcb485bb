"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "postgresql://localhost/github_bot"
DEFAULT_BIND_ADDRESS = "0.0.0.0:3000"
DEFAULT_BOT_NAME = "bot"

_REQUIRED_VARIABLES = ("GITHUB_TOKEN", "WEBHOOK_SECRET")


class ConfigError(Exception):
    """Raised when a required setting is missing."""


@dataclass(frozen=True)
class Config:
    """Settings the bot needs to run."""

    github_token: str
    webhook_secret: str
    database_url: str = DEFAULT_DATABASE_URL
    bind_address: str = DEFAULT_BIND_ADDRESS
    bot_name: str = DEFAULT_BOT_NAME

    @classmethod
    def load(cls, environ: Mapping[str, str] | None = None) -> Config:
        """Build a configuration from ``environ`` (the process environment by default)."""
        env = os.environ if environ is None else environ

        def required(name: str) -> str:
            try:
                return env[name]
            except KeyError:
                raise ConfigError(f"{name} not set") from None

        github_token, webhook_secret = (required(name) for name in _REQUIRED_VARIABLES)
        return cls(
            github_token=github_token,
            webhook_secret=webhook_secret,
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            bind_address=env.get("BIND_ADDRESS", DEFAULT_BIND_ADDRESS),
            bot_name=env.get("BOT_NAME", DEFAULT_BOT_NAME),
        )