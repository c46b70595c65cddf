"""Application factory – builds the bot, wires the relay services and cogs,
and runs the gateway connection plus the optional health endpoint."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import aiohttp
import discord
from aiohttp import web
from discord.ext import commands
from sqlalchemy import text
from sqlalchemy.engine import make_url

from anonbot.config import ConfigError, settings
from anonbot.services.crypto import TokenCipher

if TYPE_CHECKING:
    from anonbot.services.rate_limiter import SlidingWindowLimiter
    from anonbot.services.rotation import RotationScheduler

logger = logging.getLogger(__name__)


class RelayBot(commands.Bot):
    """discord.py bot owning the relay pipeline and the rotation task."""

    def __init__(self, cipher: TokenCipher) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            allowed_mentions=discord.AllowedMentions.none(),
        )
        self.cipher = cipher
        self.http_session: aiohttp.ClientSession | None = None
        self.health_runner: web.AppRunner | None = None
        self.limiter: SlidingWindowLimiter | None = None
        self.scheduler: RotationScheduler | None = None

    async def setup_hook(self) -> None:
        await _on_startup(self)

    async def close(self) -> None:
        if not self.is_closed():
            await _on_shutdown(self)
        await super().close()

    async def on_ready(self) -> None:
        if self.user is None:
            return
        logger.info("Bot %s (id=%d) ready in %d guilds.", self.user, self.user.id, len(self.guilds))


def _ensure_sqlite_dir(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or not parsed.database:
        return
    if parsed.database == ":memory:":
        return
    directory = Path(parsed.database).parent
    if not directory.exists():
        directory.mkdir(parents=True, exist_ok=True)
        logger.info("Created database directory %s", directory)


async def _on_startup(bot: RelayBot) -> None:
    """Create tables if needed, wire services, register cogs, start rotation."""
    from anonbot.db.base import Base
    from anonbot.db.engine import async_session, engine
    from anonbot.handlers.commands import RelayCommands
    from anonbot.handlers.messages import RelayListeners
    from anonbot.services.discord_platform import DiscordPlatform
    from anonbot.services.rate_limiter import SlidingWindowLimiter
    from anonbot.services.relay import RelayPipeline
    from anonbot.services.rotation import RotationScheduler
    from anonbot.services.webhooks import WebhookManager

    import anonbot.models  # noqa: F401  (registers tables on Base.metadata)

    _ensure_sqlite_dir(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured.")

    bot.http_session = aiohttp.ClientSession()
    platform = DiscordPlatform(bot, bot.http_session, webhook_name=settings.WEBHOOK_NAME)
    webhooks = WebhookManager(platform, bot.cipher, async_session)
    limiter = SlidingWindowLimiter(
        max_events=settings.RATE_LIMIT_MAX,
        window=settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    pipeline = RelayPipeline(
        platform,
        webhooks,
        limiter,
        async_session,
        allowed_channel_ids=settings.allowed_channels,
    )
    scheduler = RotationScheduler(webhooks, async_session, interval=settings.rotation_interval)

    bot.limiter = limiter
    bot.scheduler = scheduler

    await bot.add_cog(RelayListeners(pipeline))
    await bot.add_cog(RelayCommands(pipeline, scheduler, async_session))

    if settings.SYNC_COMMANDS:
        synced = await bot.tree.sync()
        logger.info("Synced %d application commands.", len(synced))

    await scheduler.start()

    if settings.HEALTH_PORT:
        bot.health_runner = await _start_health_server(bot, settings.HEALTH_PORT)


async def _on_shutdown(bot: RelayBot) -> None:
    """Graceful shutdown – stop rotation, close sessions and pools."""
    logger.info("Shutting down…")
    if bot.scheduler:
        await bot.scheduler.stop()

    if bot.health_runner:
        await bot.health_runner.cleanup()

    if bot.http_session:
        await bot.http_session.close()

    from anonbot.db.engine import engine

    await engine.dispose()
    logger.info("Shutdown complete.")


async def _health_handler(request: web.Request) -> web.Response:
    """Health check endpoint for monitoring and container health checks."""
    bot: RelayBot = request.app["bot"]
    info: dict = {"status": "ok", "ready": bot.is_ready()}
    if bot.is_ready():
        info["latency_ms"] = round(bot.latency * 1000, 1)

    from anonbot.db.engine import engine

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        info["database"] = "ok"
    except Exception:
        info["database"] = "error"
        info["status"] = "degraded"

    if bot.scheduler and bot.scheduler.next_due:
        info["next_rotation"] = bot.scheduler.next_due.isoformat()
    if bot.limiter:
        info["rate_limit_users"] = bot.limiter.tracked_users
    return web.json_response(info)


async def _start_health_server(bot: RelayBot, port: int) -> web.AppRunner:
    app = web.Application()
    app["bot"] = bot
    app.router.add_get("/health", _health_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host="0.0.0.0", port=port)
    await site.start()
    logger.info("Health server listening on port %d", port)
    return runner


async def main() -> None:
    """Entry point."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    logging.getLogger("discord").setLevel(logging.WARNING)

    try:
        secret = settings.encryption_secret()
    except ConfigError as e:
        logger.critical("%s", e)
        raise SystemExit(1) from e
    if secret is None:
        logger.warning("TOKEN_ENCRYPTION is off – webhook tokens are stored in plaintext.")

    bot = RelayBot(TokenCipher(secret))
    async with bot:
        await bot.start(settings.BOT_TOKEN)
