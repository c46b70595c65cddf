"""Bot configuration via pydantic-settings."""

from __future__ import annotations

from datetime import timedelta

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(RuntimeError):
    """Raised when the configuration cannot be used to start the bot."""


class Settings(BaseSettings):
    """All configuration is read from environment variables / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Bot ───────────────────────────────────────────────────────────
    BOT_TOKEN: str
    SYNC_COMMANDS: bool = True
    ALLOWED_CHANNEL_IDS: str = ""  # comma-separated list of channel IDs

    # ── Database ──────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///data/anonbot.db"

    # ── Webhooks ──────────────────────────────────────────────────────
    WEBHOOK_NAME: str = "General Webhook"
    TOKEN_ENCRYPTION: bool = True
    WEBHOOK_TOKEN_SECRET: str = ""
    ROTATION_INTERVAL_HOURS: float = 24.0

    # ── Rate limiting ─────────────────────────────────────────────────
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    RATE_LIMIT_MAX: int = 3

    # ── Health check ──────────────────────────────────────────────────
    HEALTH_PORT: int = 0  # 0 disables the endpoint

    # ── Logging ───────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    # ── Helpers ───────────────────────────────────────────────────────
    @property
    def allowed_channels(self) -> frozenset[int]:
        if not self.ALLOWED_CHANNEL_IDS:
            return frozenset()
        return frozenset(
            int(cid.strip()) for cid in self.ALLOWED_CHANNEL_IDS.split(",") if cid.strip()
        )

    @property
    def rotation_interval(self) -> timedelta:
        return timedelta(hours=self.ROTATION_INTERVAL_HOURS)

    def encryption_secret(self) -> str | None:
        """Return the token secret, or ``None`` when encryption is disabled.

        Raises ``ConfigError`` if encryption is enabled but no secret is set;
        the bot must not fall back to storing tokens in plaintext.
        """
        if not self.TOKEN_ENCRYPTION:
            return None
        if not self.WEBHOOK_TOKEN_SECRET:
            raise ConfigError(
                "WEBHOOK_TOKEN_SECRET is required while TOKEN_ENCRYPTION is enabled"
            )
        return self.WEBHOOK_TOKEN_SECRET


settings = Settings()  # type: ignore[call-arg]
