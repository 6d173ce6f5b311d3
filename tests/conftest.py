from __future__ import annotations

import copy
import re
import threading

import pytest
from botocore.exceptions import ClientError

from fightrise import (
    Match,
    MatchPlayer,
    MatchState,
    MatchStorage,
    Tournament,
    TournamentState,
)

_SEGMENT_PATTERN = re.compile(r"^([^\[\]]+)((?:\[\d+\])*)$")
_ATTRIBUTE_EXISTS_PATTERN = re.compile(r"^attribute_(not_)?exists\((\w+)\)$")
_MISSING = object()


def conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "ConditionalCheckFailedException",
                "Message": "The conditional request failed",
            }
        },
        operation,
    )


def _split_path(path: str) -> list[str | int]:
    steps: list[str | int] = []
    for segment in path.split("."):
        match = _SEGMENT_PATTERN.match(segment)
        assert match, f"unsupported path segment {segment!r}"
        steps.append(match.group(1))
        steps.extend(int(index) for index in re.findall(r"\[(\d+)\]", match.group(2)))
    return steps


def _resolve(item: dict, path: str) -> object:
    current: object = item
    for step in _split_path(path):
        if isinstance(step, int):
            if not isinstance(current, list) or step >= len(current):
                return _MISSING
            current = current[step]
        else:
            if not isinstance(current, dict) or step not in current:
                return _MISSING
            current = current[step]
    return current


def evaluate(condition, item: dict) -> bool:
    """Evaluate a boto3 ``Key``/``Attr`` condition object against ``item``."""
    if isinstance(condition, str):
        match = _ATTRIBUTE_EXISTS_PATTERN.match(condition.strip())
        assert match, f"unsupported condition string {condition!r}"
        exists = match.group(2) in item
        return not exists if match.group(1) else exists

    operator = condition.expression_operator
    values = condition._values  # type: ignore[attr-defined]
    if operator == "AND":
        return evaluate(values[0], item) and evaluate(values[1], item)
    if operator == "OR":
        return evaluate(values[0], item) or evaluate(values[1], item)
    if operator == "NOT":
        return not evaluate(values[0], item)

    actual = _resolve(item, values[0].name)
    if operator == "attribute_exists":
        return actual is not _MISSING
    if operator == "attribute_not_exists":
        return actual is _MISSING
    if actual is _MISSING:
        return False
    if operator == "=":
        return actual == values[1]
    if operator == "<>":
        return actual != values[1]
    if operator == "IN":
        return actual in values[1]
    if operator == "begins_with":
        return isinstance(actual, str) and actual.startswith(values[1])
    if operator == "<":
        return actual < values[1]
    if operator == ">":
        return actual > values[1]
    raise AssertionError(f"unsupported operator {operator!r}")


def _expand(path: str, names: dict[str, str]) -> str:
    return re.sub(r"#\w+", lambda match: names[match.group(0)], path)


def _set_path(item: dict, path: str, value: object) -> None:
    steps = _split_path(path)
    current: object = item
    for step in steps[:-1]:
        current = current[step]  # type: ignore[index]
    current[steps[-1]] = copy.deepcopy(value)  # type: ignore[index]


def _remove_path(item: dict, path: str) -> None:
    steps = _split_path(path)
    current: object = item
    for step in steps[:-1]:
        try:
            current = current[step]  # type: ignore[index]
        except (KeyError, IndexError):
            return
    if isinstance(current, dict):
        current.pop(steps[-1], None)  # type: ignore[arg-type]


def apply_update(
    item: dict, expression: str, names: dict[str, str], values: dict[str, object]
) -> None:
    for clause, body in re.findall(
        r"(SET|REMOVE)\s+(.*?)(?=\s+(?:SET|REMOVE)\s+|$)", expression
    ):
        for part in body.split(","):
            part = part.strip()
            if clause == "SET":
                path, placeholder = (piece.strip() for piece in part.split("="))
                _set_path(item, _expand(path, names), values[placeholder])
            else:
                _remove_path(item, _expand(part, names))


class FakeTable:
    """In-memory stand-in for a boto3 DynamoDB ``Table``.

    Each call is atomic under a lock, condition expressions are evaluated
    against the stored item and failures raise the same ``ClientError`` the
    real service does.
    """

    def __init__(self, page_size: int | None = None) -> None:
        self.items: dict[tuple[str, str], dict] = {}
        self.calls: list[tuple[str, dict]] = []
        self.page_size = page_size
        self._lock = threading.Lock()

    def queries(self, index_name: str | None = None) -> list[dict]:
        return [
            kwargs
            for name, kwargs in self.calls
            if name == "query" and kwargs.get("IndexName") == index_name
        ]

    def get_item(self, *, Key, ConsistentRead=False):
        with self._lock:
            self.calls.append(("get_item", {"Key": Key}))
            item = self.items.get((Key["pk"], Key["sk"]))
            return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(self, *, Item, ConditionExpression=None):
        with self._lock:
            self.calls.append(("put_item", {"Item": Item}))
            key = (Item["pk"], Item["sk"])
            existing = self.items.get(key, {})
            if ConditionExpression is not None and not evaluate(
                ConditionExpression, existing
            ):
                raise conditional_failure("PutItem")
            self.items[key] = copy.deepcopy(Item)

    def update_item(
        self,
        *,
        Key,
        UpdateExpression,
        ExpressionAttributeNames=None,
        ExpressionAttributeValues=None,
        ConditionExpression=None,
        ReturnValues="NONE",
    ):
        with self._lock:
            self.calls.append(("update_item", {"Key": Key}))
            key = (Key["pk"], Key["sk"])
            existing = self.items.get(key)
            candidate = copy.deepcopy(existing) if existing else dict(Key)
            if ConditionExpression is not None and not evaluate(
                ConditionExpression, existing or {}
            ):
                raise conditional_failure("UpdateItem")
            apply_update(
                candidate,
                UpdateExpression,
                ExpressionAttributeNames or {},
                ExpressionAttributeValues or {},
            )
            self.items[key] = candidate
            if ReturnValues == "ALL_NEW":
                return {"Attributes": copy.deepcopy(candidate)}
            return {}

    def query(self, *, KeyConditionExpression, IndexName=None, **kwargs):
        with self._lock:
            self.calls.append(("query", {"IndexName": IndexName, **kwargs}))
            matching = [
                self.items[key]
                for key in sorted(self.items)
                if evaluate(KeyConditionExpression, self.items[key])
            ]
            start = int(kwargs.get("ExclusiveStartKey", {}).get("offset", 0))
            end = len(matching) if self.page_size is None else start + self.page_size
            page = [copy.deepcopy(item) for item in matching[start:end]]
            response: dict[str, object] = {"Items": page, "Count": len(page)}
            if end < len(matching):
                response["LastEvaluatedKey"] = {"offset": end}
            return response


class FakeGateway:
    """Chat gateway double that records every call."""

    def __init__(self) -> None:
        self.created: list[tuple[int, str, int]] = []
        self.deleted: list[str] = []
        self.members: list[tuple[str, int]] = []
        self.cards: list[tuple[str, str]] = []
        self.fail_add_for: set[int] = set()
        self.fail_delete = False
        self._counter = 1000

    async def create_thread(self, channel_id, name, *, auto_archive_minutes):
        self._counter += 1
        self.created.append((channel_id, name, auto_archive_minutes))
        return str(self._counter)

    async def delete_thread(self, thread_ref):
        if self.fail_delete:
            raise RuntimeError("thread delete failed")
        self.deleted.append(thread_ref)

    async def add_member(self, thread_ref, user_id):
        if user_id in self.fail_add_for:
            raise RuntimeError(f"cannot add {user_id}")
        self.members.append((thread_ref, user_id))

    async def send_match_card(self, thread_ref, match):
        self.cards.append((thread_ref, match.match_id))


def make_tournament(
    tournament_id: str = "t1",
    *,
    state: TournamentState = TournamentState.IN_PROGRESS,
    channel_id: int | None = 555,
    require_check_in: bool = True,
) -> Tournament:
    return Tournament(
        tournament_id=tournament_id,
        external_id="9001",
        slug="tournament/evo-local",
        name="Evo Local",
        state=state,
        channel_id=channel_id,
        require_check_in=require_check_in,
    )


def make_match(
    set_id: str = "7001",
    *,
    tournament_id: str = "t1",
    state: MatchState = MatchState.NOT_STARTED,
    require_check_in: bool = True,
    discord_ids: tuple[int | None, int | None] = (101, 202),
) -> Match:
    return Match(
        match_id=Match.id_for_set(set_id),
        tournament_id=tournament_id,
        event_id="ev1",
        external_set_id=set_id,
        identifier="A",
        round_text="Winners Round 1",
        round=1,
        state=state,
        require_check_in=require_check_in,
        players=[
            MatchPlayer(
                slot=1,
                external_entrant_id="e1",
                player_name="Daigo",
                discord_id=discord_ids[0],
            ),
            MatchPlayer(
                slot=2,
                external_entrant_id="e2",
                player_name="Justin",
                discord_id=discord_ids[1],
            ),
        ],
    )


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def storage(table: FakeTable) -> MatchStorage:
    return MatchStorage(table)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
