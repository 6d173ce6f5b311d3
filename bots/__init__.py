"""Discord runtime for the tournament match bot.

Wires the start.gg client, the match poller and the match lifecycle to a
Discord client: match threads, button routing and admin slash commands.
"""

__all__ = ["config", "embeds", "gateway", "runtime"]
