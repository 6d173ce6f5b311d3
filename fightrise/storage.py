from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Final

from boto3.dynamodb.conditions import Attr, ConditionBase, Key
from botocore.exceptions import ClientError

from .models import Event, Match, MatchState, Tournament

log: Final = logging.getLogger("match-storage")

ACCOUNT_LINKS_PK: Final = "ACCOUNT_LINKS"
ACCOUNT_LINK_SK_TEMPLATE: Final = "STARTGG_USER#%s"


def player_path(slot: int, attribute: str) -> str:
    """Document path of a player attribute nested in a match item."""
    return f"players[{slot - 1}].{attribute}"


def build_update_expression(
    set_values: Mapping[str, object] | None = None,
    remove: Iterable[str] = (),
) -> tuple[str, dict[str, str], dict[str, object]]:
    """Render ``SET``/``REMOVE`` clauses with placeholder names and values.

    Paths may address nested attributes (``players[0].is_winner``); every
    name segment gets its own ``#u`` placeholder so reserved words such as
    ``state`` are safe.
    """
    names: dict[str, str] = {}
    values: dict[str, object] = {}
    aliases: dict[str, str] = {}

    def alias_path(path: str) -> str:
        parts = []
        for segment in path.split("."):
            name, bracket, index = segment.partition("[")
            if name not in aliases:
                aliases[name] = f"#u{len(aliases)}"
                names[aliases[name]] = name
            parts.append(aliases[name] + (bracket + index if bracket else ""))
        return ".".join(parts)

    clauses = []
    if set_values:
        assignments = []
        for position, (path, value) in enumerate(set_values.items()):
            placeholder = f":u{position}"
            values[placeholder] = value
            assignments.append(f"{alias_path(path)} = {placeholder}")
        clauses.append("SET " + ", ".join(assignments))
    removals = [alias_path(path) for path in remove]
    if removals:
        clauses.append("REMOVE " + ", ".join(removals))
    if not clauses:
        raise ValueError("update requires at least one SET or REMOVE path")
    return " ".join(clauses), names, values


def _is_conditional_failure(exc: ClientError) -> bool:
    code = exc.response.get("Error", {}).get("Code")
    return code == "ConditionalCheckFailedException"


class MatchStorage:
    """DynamoDB single-table persistence for tournaments, events and matches.

    Every state transition goes through :meth:`conditional_update`, a single
    ``update_item`` guarded by a condition expression. A failed condition is
    reported as ``None`` rather than raised so callers can tell "someone else
    got there first" apart from real errors.
    """

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Tournament table is not configured")

    # ----- Tournaments -----
    def get_tournament(self, tournament_id: str) -> Tournament | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Tournament.key(tournament_id))
        item = resp.get("Item")
        if not item:
            return None
        return Tournament.from_item(item)

    def save_tournament(self, tournament: Tournament) -> None:
        self.ensure_table()
        self._table.put_item(Item=tournament.to_item())

    def list_tournaments(self) -> list[Tournament]:
        self.ensure_table()
        items = self._query_all(
            KeyConditionExpression=Key("pk").eq(Tournament.PK_VALUE)
            & Key("sk").begins_with("TOURNAMENT#"),
        )
        tournaments = [Tournament.from_item(item) for item in items]
        tournaments.sort(key=lambda entry: (entry.name.lower(), entry.tournament_id))
        return tournaments

    def list_pollable_tournaments(self) -> list[Tournament]:
        return [entry for entry in self.list_tournaments() if entry.is_pollable]

    def record_poll(
        self,
        tournament_id: str,
        *,
        polled_at: str,
        interval_ms: int | None,
        state: str | None = None,
    ) -> None:
        self.ensure_table()
        set_values: dict[str, object] = {"last_polled_at": polled_at}
        remove: list[str] = []
        if interval_ms is None:
            remove.append("poll_interval_ms")
        else:
            set_values["poll_interval_ms"] = interval_ms
        if state is not None:
            set_values["state"] = state
        expression, names, values = build_update_expression(set_values, remove)
        try:
            self._table.update_item(
                Key=Tournament.key(tournament_id),
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression=Attr("pk").exists(),
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                log.warning("Poll recorded for unknown tournament %s", tournament_id)
                return
            raise

    # ----- Events -----
    def save_event(self, event: Event) -> None:
        self.ensure_table()
        self._table.put_item(Item=event.to_item())

    def list_events(self, tournament_id: str) -> list[Event]:
        self.ensure_table()
        items = self._query_all(
            KeyConditionExpression=Key("pk").eq(Event.PK_TEMPLATE % tournament_id)
            & Key("sk").begins_with("EVENT#"),
        )
        return [Event.from_item(item) for item in items]

    # ----- Account links -----
    def save_account_link(self, startgg_user_id: str, discord_id: int) -> None:
        self.ensure_table()
        self._table.put_item(
            Item={
                "pk": ACCOUNT_LINKS_PK,
                "sk": ACCOUNT_LINK_SK_TEMPLATE % startgg_user_id,
                "startgg_user_id": str(startgg_user_id),
                "discord_id": str(discord_id),
            }
        )

    def get_account_links(self) -> dict[str, int]:
        """Map of start.gg user id to Discord user id, loaded in one query."""
        self.ensure_table()
        items = self._query_all(
            KeyConditionExpression=Key("pk").eq(ACCOUNT_LINKS_PK)
            & Key("sk").begins_with("STARTGG_USER#"),
        )
        links: dict[str, int] = {}
        for item in items:
            try:
                links[str(item["startgg_user_id"])] = int(item["discord_id"])
            except (KeyError, TypeError, ValueError):  # pragma: no cover - defensive
                log.warning("Skipping malformed account link %s", item.get("sk"))
        return links

    # ----- Matches -----
    def get_match(self, match_id: str) -> Match | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Match.key(match_id), ConsistentRead=True)
        item = resp.get("Item")
        if not item:
            return None
        return Match.from_item(item)

    def create_match(self, match: Match) -> bool:
        """Insert ``match`` unless a match for the same set already exists."""
        self.ensure_table()
        try:
            self._table.put_item(
                Item=match.to_item(),
                ConditionExpression=Attr("pk").not_exists(),
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True

    def list_matches_for_tournament(self, tournament_id: str) -> list[Match]:
        self.ensure_table()
        items = self._query_all(
            IndexName=Match.INDEX_NAME,
            KeyConditionExpression=Key("gsi1pk").eq(
                Match.INDEX_PK_TEMPLATE % tournament_id
            ),
        )
        return [Match.from_item(item) for item in items]

    def conditional_update(
        self,
        match_id: str,
        *,
        condition: ConditionBase,
        set_values: Mapping[str, object] | None = None,
        remove: Iterable[str] = (),
    ) -> Match | None:
        """Apply an update only if ``condition`` holds; return the new match.

        ``None`` means the guard failed (or the match does not exist) and no
        change was written.
        """
        self.ensure_table()
        expression, names, values = build_update_expression(set_values, remove)
        kwargs: dict[str, object] = {
            "Key": Match.key(match_id),
            "UpdateExpression": expression,
            "ConditionExpression": Attr("pk").exists() & condition,
            "ReturnValues": "ALL_NEW",
        }
        if names:
            kwargs["ExpressionAttributeNames"] = names
        if values:
            kwargs["ExpressionAttributeValues"] = values
        try:
            resp = self._table.update_item(**kwargs)
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return None
            raise
        attributes = resp.get("Attributes")
        if not attributes:  # pragma: no cover - defensive
            return self.get_match(match_id)
        return Match.from_item(attributes)

    def transition(
        self,
        match_id: str,
        from_states: Iterable[MatchState],
        to_state: MatchState,
        *,
        condition: ConditionBase | None = None,
        set_values: Mapping[str, object] | None = None,
        remove: Iterable[str] = (),
    ) -> Match | None:
        """Move a match to ``to_state`` if it is currently in ``from_states``."""
        allowed = [state.value for state in from_states]
        guard: ConditionBase = Attr("state").is_in(allowed)
        if condition is not None:
            guard = guard & condition
        values = {"state": to_state.value}
        if set_values:
            values.update(set_values)
        return self.conditional_update(
            match_id, condition=guard, set_values=values, remove=remove
        )

    # ----- Helpers -----
    def _query_all(self, **kwargs) -> list[dict[str, object]]:
        items: list[dict[str, object]] = []
        while True:
            resp = self._table.query(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key


__all__ = [
    "MatchStorage",
    "build_update_expression",
    "player_path",
    "ACCOUNT_LINKS_PK",
]
