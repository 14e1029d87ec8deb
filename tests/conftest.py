from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

from giveaway_engine import (
    Giveaway,
    GiveawayStatus,
    GiveawayStorage,
    Participation,
)

_SET_ASSIGNMENT = re.compile(r"^\s*(\S+)\s*=\s*(:\w+)\s*$")
_EQUALS = re.compile(r"^\s*(#?\w+)\s*=\s*(:\w+)\s*$")
_NOT_EXISTS = re.compile(r"^\s*attribute_not_exists\((\w+)\)\s*$")


def _conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "ConditionalCheckFailedException",
                "Message": "The conditional request failed",
            }
        },
        operation,
    )


def evaluate(condition, item: dict[str, object] | None) -> bool:
    """Evaluate a boto3 condition object against a stored item."""
    item = item or {}
    expression = condition.get_expression()
    operator = expression["operator"]
    values = expression["values"]
    if operator == "AND":
        return all(evaluate(value, item) for value in values)
    if operator == "OR":
        return any(evaluate(value, item) for value in values)
    if operator == "NOT":
        return not evaluate(values[0], item)

    name = values[0].name
    present = name in item
    if operator == "attribute_exists":
        return present
    if operator == "attribute_not_exists":
        return not present
    if not present:
        return False
    current = item[name]
    if operator == "=":
        return current == values[1]
    if operator == "<>":
        return current != values[1]
    if operator == "<=":
        return current <= values[1]
    if operator == "<":
        return current < values[1]
    if operator == ">=":
        return current >= values[1]
    if operator == ">":
        return current > values[1]
    if operator == "begins_with":
        return str(current).startswith(values[1])
    if operator == "IN":
        return current in values[1]
    raise NotImplementedError(operator)  # pragma: no cover - helper


class FakeClient:
    def __init__(self, table: FakeTable) -> None:
        self._table = table
        self._deserializer = TypeDeserializer()

    def _deserialize(self, values: dict[str, object]) -> dict[str, object]:
        return {k: self._deserializer.deserialize(v) for k, v in values.items()}

    def _check(self, expression: str, item, names, values) -> bool:
        item = item or {}
        missing = _NOT_EXISTS.match(expression)
        if missing:
            return missing.group(1) not in item
        equals = _EQUALS.match(expression)
        if equals:
            name = names.get(equals.group(1), equals.group(1))
            return item.get(name) == values[equals.group(2)]
        raise NotImplementedError(expression)  # pragma: no cover - helper

    def transact_write_items(self, *, TransactItems):
        table = self._table
        table.transactions += 1
        if table.before_transaction is not None:
            hook, table.before_transaction = table.before_transaction, None
            hook()
        if table.transaction_errors:
            raise table.transaction_errors.pop(0)

        reasons: list[dict[str, str]] = []
        staged: list[tuple[tuple[str, str], dict[str, object]]] = []
        for action in TransactItems:
            if "Update" in action:
                request = action["Update"]
                key = self._deserialize(request["Key"])
                values = self._deserialize(request.get("ExpressionAttributeValues", {}))
                names = request.get("ExpressionAttributeNames", {})
                current = table.items.get((key["pk"], key["sk"]))
                if not self._check(request["ConditionExpression"], current, names, values):
                    reasons.append({"Code": "ConditionalCheckFailed"})
                    continue
                updated = dict(current or key)
                table.apply_set(updated, request["UpdateExpression"], names, values)
                staged.append(((key["pk"], key["sk"]), updated))
            elif "Put" in action:
                request = action["Put"]
                item = self._deserialize(request["Item"])
                current = table.items.get((item["pk"], item["sk"]))
                condition = request.get("ConditionExpression")
                if condition and not self._check(condition, current, {}, {}):
                    reasons.append({"Code": "ConditionalCheckFailed"})
                    continue
                staged.append(((item["pk"], item["sk"]), item))
            reasons.append({"Code": "None"})

        if any(reason["Code"] != "None" for reason in reasons):
            raise ClientError(
                {
                    "Error": {
                        "Code": "TransactionCanceledException",
                        "Message": "Transaction cancelled",
                    },
                    "CancellationReasons": reasons,
                },
                "TransactWriteItems",
            )
        for key, item in staged:
            table.items[key] = item


class FakeTable:
    """In-memory stand-in for a DynamoDB Table resource."""

    def __init__(self, name: str = "giveaways", *, page_size: int | None = None) -> None:
        self.name = name
        self.items: dict[tuple[str, str], dict[str, object]] = {}
        self.page_size = page_size
        self.transactions = 0
        self.transaction_errors: list[Exception] = []
        self.before_transaction: Callable[[], None] | None = None
        self.meta = SimpleNamespace(client=FakeClient(self))

    @staticmethod
    def apply_set(item, expression: str, names, values) -> None:
        assignments = expression.strip()
        assert assignments.startswith("SET ")
        for part in assignments[4:].split(","):
            match = _SET_ASSIGNMENT.match(part)
            assert match, part
            name = names.get(match.group(1), match.group(1))
            item[name] = values[match.group(2)]

    def get_item(self, *, Key, ConsistentRead=False):
        del ConsistentRead
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": dict(item)} if item else {}

    def put_item(self, *, Item, ConditionExpression=None):
        key = (Item["pk"], Item["sk"])
        if ConditionExpression is not None and not evaluate(
            ConditionExpression, self.items.get(key)
        ):
            raise _conditional_failure("PutItem")
        self.items[key] = dict(Item)

    def update_item(
        self,
        *,
        Key,
        UpdateExpression,
        ConditionExpression=None,
        ExpressionAttributeNames=None,
        ExpressionAttributeValues=None,
    ):
        key = (Key["pk"], Key["sk"])
        current = self.items.get(key)
        if ConditionExpression is not None and not evaluate(ConditionExpression, current):
            raise _conditional_failure("UpdateItem")
        updated = dict(current or Key)
        self.apply_set(
            updated,
            UpdateExpression,
            ExpressionAttributeNames or {},
            ExpressionAttributeValues or {},
        )
        self.items[key] = updated
        return {}

    def _page(self, keys, ExclusiveStartKey, FilterExpression, Select):
        keys = sorted(keys)
        if ExclusiveStartKey:
            start = (ExclusiveStartKey["pk"], ExclusiveStartKey["sk"])
            keys = [key for key in keys if key > start]
        last_key = None
        if self.page_size is not None and len(keys) > self.page_size:
            keys = keys[: self.page_size]
            last_key = {"pk": keys[-1][0], "sk": keys[-1][1]}
        items = [dict(self.items[key]) for key in keys]
        if FilterExpression is not None:
            items = [item for item in items if evaluate(FilterExpression, item)]
        resp: dict[str, object] = {"Count": len(items)}
        if Select != "COUNT":
            resp["Items"] = items
        if last_key:
            resp["LastEvaluatedKey"] = last_key
        return resp

    def query(
        self,
        *,
        KeyConditionExpression,
        FilterExpression=None,
        ExclusiveStartKey=None,
        Select="ALL_ATTRIBUTES",
        ConsistentRead=False,
    ):
        del ConsistentRead
        keys = [
            key for key, item in self.items.items() if evaluate(KeyConditionExpression, item)
        ]
        return self._page(keys, ExclusiveStartKey, FilterExpression, Select)

    def scan(self, *, FilterExpression=None, ExclusiveStartKey=None, Select="ALL_ATTRIBUTES"):
        return self._page(list(self.items), ExclusiveStartKey, FilterExpression, Select)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def storage(table: FakeTable) -> GiveawayStorage:
    return GiveawayStorage(table)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def make_giveaway(storage: GiveawayStorage):
    def factory(
        giveaway_id: str = "gw1",
        *,
        status: str = GiveawayStatus.ACTIVE,
        winners_count: int = 1,
        owner_id: int = 1000,
        start_at: datetime | None = NOW - timedelta(days=2),
        end_at: datetime | None = NOW - timedelta(minutes=1),
        **kwargs,
    ) -> Giveaway:
        giveaway = Giveaway(
            giveaway_id=giveaway_id,
            title=kwargs.pop("title", f"Giveaway {giveaway_id}"),
            owner_id=owner_id,
            status=status,
            winners_count=winners_count,
            start_at=start_at,
            end_at=end_at,
            **kwargs,
        )
        storage.save_giveaway(giveaway)
        return giveaway

    return factory


@pytest.fixture
def add_participants(storage: GiveawayStorage):
    def factory(giveaway_id: str, tickets: dict[int, int], **kwargs) -> list[Participation]:
        created = []
        for user_id, count in tickets.items():
            participation = Participation(
                giveaway_id=giveaway_id,
                user_id=user_id,
                tickets_base=count,
                display_name=f"user{user_id}",
                **kwargs,
            )
            storage.save_participation(participation)
            created.append(participation)
        return created

    return factory
