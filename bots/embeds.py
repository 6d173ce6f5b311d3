"""Discord rendering for match cards: embed plus the buttons for the next step."""

from __future__ import annotations

import discord

from fightrise import ActionKind, Match, MatchState, create_interaction_id
from fightrise.models import parse_iso
from fightrise.validation import format_score

STATE_COLORS: dict[MatchState, int] = {
    MatchState.NOT_STARTED: 0x95A5A6,
    MatchState.CALLED: 0xF1C40F,
    MatchState.CHECKED_IN: 0x3498DB,
    MatchState.IN_PROGRESS: 0x3498DB,
    MatchState.PENDING_CONFIRMATION: 0xE67E22,
    MatchState.COMPLETED: 0x2ECC71,
    MatchState.DISPUTED: 0xE74C3C,
    MatchState.DQ: 0x992D22,
}

QUICK_SCORES: tuple[tuple[int, int], ...] = ((2, 0), (2, 1))


def _player_line(match: Match, slot: int) -> str:
    player = match.player(slot)
    if player is None:
        return "TBD"
    parts = [player.mention()]
    if match.require_check_in and match.state in (
        MatchState.CALLED,
        MatchState.CHECKED_IN,
    ):
        parts.append("✅ checked in" if player.is_checked_in else "⏳ not checked in")
    if player.is_winner is True:
        parts.append("🏆")
    if player.reported_score is not None:
        parts.append(f"({player.reported_score})")
    return " ".join(parts)


def build_match_embed(match: Match) -> discord.Embed:
    embed = discord.Embed(
        title=f"{match.round_text} ({match.identifier})",
        description=f"Status: **{match.state.value.replace('_', ' ').title()}**",
        color=STATE_COLORS.get(match.state, 0x95A5A6),
    )
    embed.add_field(name="Player 1", value=_player_line(match, 1), inline=True)
    embed.add_field(name="Player 2", value=_player_line(match, 2), inline=True)

    deadline = parse_iso(match.check_in_deadline)
    if deadline is not None and match.state is MatchState.CALLED:
        ts = int(deadline.timestamp())
        embed.add_field(
            name="Check-in Closes", value=f"<t:{ts}:t> (<t:{ts}:R>)", inline=False
        )
    if match.state is MatchState.PENDING_CONFIRMATION and match.reporter_slot:
        reporter = match.player(match.reporter_slot)
        opponent = match.opponent_of(match.reporter_slot)
        claim = f" {format_score(match.score_claim)}" if match.score_claim else ""
        winner = match.winner()
        embed.add_field(
            name="Reported Result",
            value=(
                f"{reporter.player_name if reporter else 'A player'} reported "
                f"{winner.player_name if winner else 'a result'} winning{claim}. "
                f"{opponent.mention() if opponent else 'Opponent'}, please confirm."
            ),
            inline=False,
        )
    embed.set_footer(text=f"Match {match.match_id}")
    return embed


def build_match_view(match: Match) -> discord.ui.View:
    """Buttons for whatever the players can do next in ``match``'s state."""
    view = discord.ui.View(timeout=None)

    def add(label: str, custom_id: str, style: discord.ButtonStyle, row: int = 0) -> None:
        view.add_item(
            discord.ui.Button(label=label, custom_id=custom_id, style=style, row=row)
        )

    state = match.state
    if state is MatchState.CALLED and match.require_check_in:
        for player in match.players:
            add(
                f"Check in: {player.player_name}"[:80],
                create_interaction_id(ActionKind.CHECK_IN, match.match_id, player.slot),
                discord.ButtonStyle.primary,
            )
    elif state in (MatchState.CHECKED_IN, MatchState.IN_PROGRESS) or (
        state is MatchState.CALLED and not match.require_check_in
    ):
        for row, player in enumerate(match.players):
            for score in QUICK_SCORES:
                add(
                    f"{player.player_name} won {format_score(score)}"[:80],
                    create_interaction_id(
                        ActionKind.REPORT, match.match_id, player.slot, score
                    ),
                    discord.ButtonStyle.secondary,
                    row=row,
                )
    elif state is MatchState.PENDING_CONFIRMATION:
        add(
            "Confirm",
            create_interaction_id(ActionKind.CONFIRM, match.match_id),
            discord.ButtonStyle.success,
        )
        add(
            "Dispute",
            create_interaction_id(ActionKind.DISPUTE, match.match_id),
            discord.ButtonStyle.danger,
        )
    elif state is MatchState.DISPUTED:
        add(
            "Reopen",
            create_interaction_id(ActionKind.REOPEN, match.match_id),
            discord.ButtonStyle.secondary,
        )
    return view


__all__ = ["build_match_embed", "build_match_view", "STATE_COLORS"]
