"""Discord bot runtime wiring the poller, match lifecycle and interaction routing."""

from __future__ import annotations

import asyncio
import logging
from typing import Final

import boto3
import discord
from discord import app_commands
from discord.ext import tasks

from fightrise import (
    ActionOutcome,
    Actor,
    BackgroundTasks,
    MatchLifecycleService,
    MatchStorage,
    MatchSynchronizer,
    OutcomeCode,
    PollScheduler,
    build_dispatcher,
)
from startgg_api import ResponseCache, StartGGClient

from .config import EnvironmentConfig
from .embeds import build_match_embed, build_match_view
from .gateway import DiscordThreadGateway

log: Final = logging.getLogger("fightrise-bot")

LOG_FORMAT: Final = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
SCHEDULE_REFRESH_MINUTES: Final = 5
ADMIN_ONLY_MESSAGE: Final = (
    "You need administrator or tournament-admin role to run this command."
)


def has_admin_role(interaction: discord.Interaction, admin_role_id: int | None) -> bool:
    member = interaction.user
    guild_perms = getattr(member, "guild_permissions", None)
    if getattr(guild_perms, "administrator", False):
        return True
    if admin_role_id is None:
        return False
    roles = getattr(member, "roles", [])
    for role in roles or []:
        if getattr(role, "id", None) == admin_role_id:
            return True
    return False


def format_poll_status(status) -> str:
    def stamp(value) -> str:
        return f"<t:{int(value.timestamp())}:R>" if value is not None else "never"

    interval = (
        f"{status.interval_ms // 1000}s" if status.interval_ms is not None else "stopped"
    )
    return "\n".join(
        [
            f"State: **{status.state.value.replace('_', ' ')}**",
            f"Interval: {interval}",
            f"Last poll: {stamp(status.last_polled_at)}",
            f"Next poll: {stamp(status.next_poll_at)}",
            f"Poll loop running: {'yes' if status.scheduled else 'no'}",
        ]
    )


class FightRiseRuntime:
    def __init__(self, config: EnvironmentConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True

        self.config = config
        self.bot = discord.Client(intents=intents)
        self.tree = app_commands.CommandTree(self.bot)
        self.guild_object = (
            discord.Object(id=config.guild_id) if config.guild_id is not None else None
        )

        self.dynamodb = boto3.resource("dynamodb", region_name=config.aws_region)
        self.storage = MatchStorage(self.dynamodb.Table(config.tournament_table_name))
        self.startgg = StartGGClient(
            config.startgg_api_key,
            cache=ResponseCache(
                enabled=config.cache_enabled,
                ttl_seconds=config.cache_ttl_seconds,
                max_entries=config.cache_max_entries,
            ),
            max_retries=config.startgg_max_retries,
            timeout=config.request_timeout_seconds,
        )
        self.background = BackgroundTasks()
        self.gateway = DiscordThreadGateway(self.bot)
        self.lifecycle = MatchLifecycleService(
            self.storage,
            self.gateway,
            reporter=self.startgg,
            background=self.background,
        )
        self.synchronizer = MatchSynchronizer(
            self.storage,
            self.startgg,
            on_newly_playable=self.lifecycle.provision_thread,
            background=self.background,
        )
        self.scheduler = PollScheduler(self.storage, self.synchronizer.sync_tournament)
        self.dispatcher = build_dispatcher(self.lifecycle)
        self.refresh_schedules = tasks.loop(minutes=SCHEDULE_REFRESH_MINUTES)(
            self._refresh_schedules
        )
        self._commands_synced = False

        self.bot.event(self.on_ready)
        self.bot.event(self.on_interaction)
        self.register_commands()

    # ----- Lifecycle -----
    async def on_ready(self) -> None:
        log.info("Logged in as %s", self.bot.user)
        if not self._commands_synced:
            if self.guild_object is not None:
                await self.tree.sync(guild=self.guild_object)
            else:
                await self.tree.sync()
            self._commands_synced = True
        await self.scheduler.start()
        if not self.refresh_schedules.is_running():
            self.refresh_schedules.start()

    async def _refresh_schedules(self) -> None:
        try:
            await self.scheduler.refresh()
        except Exception:
            log.exception("Failed to refresh poll schedules")

    async def shutdown(self) -> None:
        self.refresh_schedules.cancel()
        await self.scheduler.stop()
        await self.background.cancel_all()
        self.startgg.close()
        log.info("Runtime stopped")

    async def run(self) -> None:
        async with self.bot:
            try:
                await self.bot.start(self.config.discord_token)
            finally:
                await self.shutdown()

    # ----- Button routing -----
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        custom_id = str((interaction.data or {}).get("custom_id", ""))
        actor = Actor(
            user_id=interaction.user.id,
            is_admin=has_admin_role(interaction, self.config.admin_role_id),
        )
        await interaction.response.defer(ephemeral=True, thinking=False)
        try:
            outcome = await self.dispatcher.dispatch(custom_id, actor)
        except Exception:
            log.exception("Interaction %s failed", custom_id)
            await interaction.followup.send(
                "Something went wrong while updating the match.", ephemeral=True
            )
            return
        await self._render_outcome(interaction, outcome)

    async def _render_outcome(
        self, interaction: discord.Interaction, outcome: ActionOutcome
    ) -> None:
        if outcome.match is not None and outcome.code is not OutcomeCode.UNRECOGNIZED:
            message = interaction.message
            if message is not None:
                try:
                    await message.edit(
                        embed=build_match_embed(outcome.match),
                        view=build_match_view(outcome.match),
                    )
                except discord.HTTPException as exc:
                    log.warning("Failed to refresh match card: %s", exc)
        await interaction.followup.send(outcome.message, ephemeral=True)

    # ----- Slash commands -----
    def register_commands(self) -> None:
        guild_kwargs = {"guild": self.guild_object} if self.guild_object else {}
        admin_role_id = self.config.admin_role_id

        async def admin_check(interaction: discord.Interaction) -> bool:
            if has_admin_role(interaction, admin_role_id):
                return True
            raise app_commands.CheckFailure(ADMIN_ONLY_MESSAGE)

        @app_commands.describe(tournament_id="Local tournament id")
        @app_commands.check(admin_check)
        @self.tree.command(
            name="poll-status",
            description="Show when a tournament was last and will next be synced",
            **guild_kwargs,
        )
        async def poll_status_command(  # pragma: no cover - Discord slash command wiring
            interaction: discord.Interaction, tournament_id: str
        ) -> None:
            status = await self.scheduler.get_poll_status(tournament_id)
            if status is None:
                await interaction.response.send_message(
                    "Tournament not found", ephemeral=True
                )
                return
            await interaction.response.send_message(
                format_poll_status(status), ephemeral=True
            )

        @app_commands.describe(tournament_id="Local tournament id")
        @app_commands.check(admin_check)
        @self.tree.command(
            name="poll-now",
            description="Sync a tournament with start.gg right away",
            **guild_kwargs,
        )
        async def poll_now_command(  # pragma: no cover - Discord slash command wiring
            interaction: discord.Interaction, tournament_id: str
        ) -> None:
            result = await self.scheduler.trigger_immediate_poll(tournament_id)
            await interaction.response.send_message(result.message, ephemeral=True)

        @app_commands.describe(
            match_id="Match id shown in the match card footer",
            player="Which player to disqualify",
            reason="Optional reason recorded in the logs",
        )
        @app_commands.choices(
            player=[
                app_commands.Choice(name="Player 1", value="1"),
                app_commands.Choice(name="Player 2", value="2"),
                app_commands.Choice(name="Both players", value="1,2"),
            ]
        )
        @app_commands.check(admin_check)
        @self.tree.command(
            name="dq", description="Disqualify players from a match", **guild_kwargs
        )
        async def dq_command(  # pragma: no cover - Discord slash command wiring
            interaction: discord.Interaction,
            match_id: str,
            player: app_commands.Choice[str],
            reason: str | None = None,
        ) -> None:
            await interaction.response.defer(ephemeral=True)
            outcome = await self.disqualify(
                interaction, match_id.strip(), player.value, reason
            )
            await interaction.followup.send(outcome.message, ephemeral=True)

        @self.tree.error
        async def on_app_command_error(  # pragma: no cover - Discord slash command wiring
            interaction: discord.Interaction, error: app_commands.AppCommandError
        ) -> None:
            if isinstance(error, app_commands.CheckFailure):
                message = str(error) or ADMIN_ONLY_MESSAGE
            else:
                log.exception("Slash command failed", exc_info=error)
                message = "An unexpected error occurred while running this command."
            try:
                await interaction.response.send_message(message, ephemeral=True)
            except discord.InteractionResponded:
                await interaction.followup.send(message, ephemeral=True)

    async def disqualify(
        self,
        interaction: discord.Interaction,
        match_id: str,
        slots_value: str,
        reason: str | None,
    ) -> ActionOutcome:
        slots = [int(part) for part in slots_value.split(",") if part]
        outcome = await self.lifecycle.disqualify(
            match_id,
            slots,
            admin_id=interaction.user.id,
            is_admin=has_admin_role(interaction, self.config.admin_role_id),
            reason=reason,
        )
        match = outcome.match
        if outcome.success and match is not None and match.thread_ref:
            try:
                await self.gateway.send_match_card(match.thread_ref, match)
            except Exception as exc:
                log.warning("Failed to post DQ notice for %s: %s", match_id, exc)
        return outcome


async def main() -> None:
    config = EnvironmentConfig.load()
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    runtime = FightRiseRuntime(config)
    await runtime.run()


def run() -> None:
    asyncio.run(main())


__all__ = ["FightRiseRuntime", "has_admin_role", "format_poll_status", "main", "run"]
