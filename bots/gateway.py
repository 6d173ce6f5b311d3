from __future__ import annotations

import logging
from typing import Final

import discord

from fightrise import Match

from .embeds import build_match_embed, build_match_view

log: Final = logging.getLogger("fightrise-bot")


class DiscordThreadGateway:
    """Match threads on Discord, addressed by the thread id as a string."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def _resolve(self, channel_id: int) -> discord.abc.GuildChannel | discord.Thread:
        channel = self._client.get_channel(channel_id)
        if channel is None:
            channel = await self._client.fetch_channel(channel_id)
        return channel  # type: ignore[return-value]

    async def _thread(self, thread_ref: str) -> discord.Thread:
        channel = await self._resolve(int(thread_ref))
        if not isinstance(channel, discord.Thread):
            raise RuntimeError(f"Channel {thread_ref} is not a thread")
        return channel

    async def create_thread(
        self, channel_id: int, name: str, *, auto_archive_minutes: int
    ) -> str:
        channel = await self._resolve(channel_id)
        if not isinstance(channel, discord.TextChannel):
            raise RuntimeError(f"Channel {channel_id} cannot hold match threads")
        thread = await channel.create_thread(
            name=name,
            type=discord.ChannelType.public_thread,
            auto_archive_duration=auto_archive_minutes,  # type: ignore[arg-type]
        )
        return str(thread.id)

    async def delete_thread(self, thread_ref: str) -> None:
        thread = await self._thread(thread_ref)
        await thread.delete()

    async def add_member(self, thread_ref: str, user_id: int) -> None:
        thread = await self._thread(thread_ref)
        await thread.add_user(discord.Object(id=user_id))

    async def send_match_card(self, thread_ref: str, match: Match) -> None:
        thread = await self._thread(thread_ref)
        mentions = " ".join(
            player.mention() for player in match.players if player.discord_id
        )
        content = f"{mentions} your match is ready!" if mentions else None
        await thread.send(
            content=content,
            embed=build_match_embed(match),
            view=build_match_view(match),
        )


__all__ = ["DiscordThreadGateway"]
