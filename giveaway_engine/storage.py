from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from datetime import datetime

from boto3.dynamodb.conditions import Attr, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from .errors import InvalidGiveawayError, PersistenceError
from .models import (
    Giveaway,
    GiveawayStatus,
    Participation,
    ParticipationStatus,
    Winner,
    format_timestamp,
)

log = logging.getLogger("giveaway-storage")

_CONDITION_FAILED = "ConditionalCheckFailedException"
_TRANSACTION_CANCELLED = "TransactionCanceledException"


def _error_code(exc: ClientError) -> str | None:
    return exc.response.get("Error", {}).get("Code")


class GiveawayStorage:
    """DynamoDB access for giveaways, participations and winners.

    Every status change is a conditional write on the current status, so two
    writers racing on the same giveaway can never both succeed.
    """

    def __init__(self, table) -> None:
        self._table = table
        self._serializer = TypeSerializer()

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Giveaway table is not configured")

    # ----- Giveaways -----
    def get_giveaway(
        self, giveaway_id: str, *, consistent: bool = False
    ) -> Giveaway | None:
        self.ensure_table()
        resp = self._table.get_item(
            Key=Giveaway.key(giveaway_id), ConsistentRead=consistent
        )
        item = resp.get("Item")
        if not item:
            return None
        return Giveaway.from_item(item)

    def save_giveaway(self, giveaway: Giveaway) -> None:
        self.ensure_table()
        self._table.put_item(Item=giveaway.to_item())

    def list_due_giveaways(
        self, status: str, due_field: str, now: datetime
    ) -> list[Giveaway]:
        """Giveaways in ``status`` whose ``due_field`` timestamp is not after ``now``."""
        self.ensure_table()
        filter_expression = (
            Attr("entity").eq(Giveaway.ENTITY)
            & Attr("status").eq(status)
            & Attr(due_field).lte(format_timestamp(now))
        )
        giveaways: list[Giveaway] = []
        for item in self._paginate(self._table.scan, FilterExpression=filter_expression):
            try:
                giveaways.append(Giveaway.from_item(item))
            except (InvalidGiveawayError, KeyError, TypeError, ValueError) as exc:
                log.error("Skipping unreadable giveaway item %s: %s", item.get("pk"), exc)
        giveaways.sort(key=lambda g: (getattr(g, due_field), g.giveaway_id))
        return giveaways

    def activate_giveaway(self, giveaway_id: str, now: datetime) -> bool:
        """Flip one SCHEDULED giveaway whose start time has passed to ACTIVE."""
        self.ensure_table()
        now_iso = format_timestamp(now)
        return self._conditional_update(
            Key=Giveaway.key(giveaway_id),
            UpdateExpression="SET #status = :active, updated_at = :now",
            ConditionExpression=Attr("status").eq(GiveawayStatus.SCHEDULED)
            & Attr("start_at").lte(now_iso),
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={
                ":active": GiveawayStatus.ACTIVE,
                ":now": now_iso,
            },
        )

    def cancel_giveaway(
        self, giveaway_id: str, from_statuses: Iterable[str], now: datetime
    ) -> bool:
        self.ensure_table()
        return self._conditional_update(
            Key=Giveaway.key(giveaway_id),
            UpdateExpression="SET #status = :cancelled, updated_at = :now",
            ConditionExpression=Attr("status").is_in(list(from_statuses)),
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={
                ":cancelled": GiveawayStatus.CANCELLED,
                ":now": format_timestamp(now),
            },
        )

    def complete_giveaway(
        self,
        giveaway_id: str,
        winners: list[Winner],
        *,
        total_participants: int,
        now: datetime,
    ) -> bool:
        """Insert winners and flip ACTIVE to FINISHED in one transaction.

        Returns False when the giveaway was no longer ACTIVE at commit time;
        nothing is written in that case.
        """
        self.ensure_table()
        table_name = self._table.name
        now_iso = format_timestamp(now)
        actions: list[dict[str, object]] = [
            {
                "Update": {
                    "TableName": table_name,
                    "Key": self._serialize(Giveaway.key(giveaway_id)),
                    "UpdateExpression": (
                        "SET #status = :finished, updated_at = :now, "
                        "finished_at = :now, total_participants = :total"
                    ),
                    "ConditionExpression": "#status = :active",
                    "ExpressionAttributeNames": {"#status": "status"},
                    "ExpressionAttributeValues": self._serialize(
                        {
                            ":finished": GiveawayStatus.FINISHED,
                            ":active": GiveawayStatus.ACTIVE,
                            ":now": now_iso,
                            ":total": total_participants,
                        }
                    ),
                }
            }
        ]
        for winner in winners:
            actions.append(
                {
                    "Put": {
                        "TableName": table_name,
                        "Item": self._serialize(winner.to_item()),
                        "ConditionExpression": "attribute_not_exists(pk)",
                    }
                }
            )

        try:
            self._table.meta.client.transact_write_items(TransactItems=actions)
        except ClientError as exc:
            if _error_code(exc) == _TRANSACTION_CANCELLED:
                reasons = exc.response.get("CancellationReasons") or []
                if reasons and reasons[0].get("Code") == "ConditionalCheckFailed":
                    return False
            raise PersistenceError(
                f"Completion transaction for {giveaway_id} failed: {exc}"
            ) from exc
        return True

    def mark_results_published(self, giveaway_id: str, now: datetime) -> bool:
        return self._stamp_once(Giveaway.key(giveaway_id), "results_published_at", now)

    def mark_creator_notified(self, giveaway_id: str, now: datetime) -> bool:
        return self._stamp_once(Giveaway.key(giveaway_id), "creator_notified_at", now)

    # ----- Participations -----
    def save_participation(self, participation: Participation) -> None:
        self.ensure_table()
        self._table.put_item(Item=participation.to_item())

    def list_participations(
        self,
        giveaway_id: str,
        *,
        eligible_only: bool = True,
        consistent: bool = False,
    ) -> list[Participation]:
        self.ensure_table()
        kwargs: dict[str, object] = {
            "KeyConditionExpression": Key("pk").eq(Participation.PK_TEMPLATE % giveaway_id)
            & Key("sk").begins_with(Participation.SK_PREFIX),
            "ConsistentRead": consistent,
        }
        if eligible_only:
            kwargs["FilterExpression"] = Attr("status").eq(ParticipationStatus.JOINED)
        participations = [
            Participation.from_item(item)
            for item in self._paginate(self._table.query, **kwargs)
        ]
        participations.sort(key=lambda p: p.user_id)
        return participations

    def count_participations(self, giveaway_id: str) -> int:
        return self._count(Participation.PK_TEMPLATE % giveaway_id, Participation.SK_PREFIX)

    # ----- Winners -----
    def list_winners(self, giveaway_id: str, *, consistent: bool = False) -> list[Winner]:
        self.ensure_table()
        winners = [
            Winner.from_item(item)
            for item in self._paginate(
                self._table.query,
                KeyConditionExpression=Key("pk").eq(Winner.PK_TEMPLATE % giveaway_id)
                & Key("sk").begins_with(Winner.SK_PREFIX),
                ConsistentRead=consistent,
            )
        ]
        winners.sort(key=lambda w: w.place)
        return winners

    def count_winners(self, giveaway_id: str) -> int:
        return self._count(Winner.PK_TEMPLATE % giveaway_id, Winner.SK_PREFIX)

    def mark_winner_notified(self, giveaway_id: str, user_id: int, now: datetime) -> bool:
        return self._stamp_once(Winner.key(giveaway_id, user_id), "notified_at", now)

    # ----- Helpers -----
    def _serialize(self, values: dict[str, object]) -> dict[str, object]:
        return {name: self._serializer.serialize(value) for name, value in values.items()}

    def _paginate(self, operation, **kwargs) -> Iterator[dict[str, object]]:
        while True:
            resp = operation(**kwargs)
            yield from resp.get("Items", [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    def _count(self, pk_value: str, sk_prefix: str) -> int:
        self.ensure_table()
        kwargs: dict[str, object] = {
            "KeyConditionExpression": Key("pk").eq(pk_value)
            & Key("sk").begins_with(sk_prefix),
            "Select": "COUNT",
        }
        total = 0
        while True:
            resp = self._table.query(**kwargs)
            total += int(resp.get("Count", 0))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return total
            kwargs["ExclusiveStartKey"] = last_key

    def _stamp_once(self, key: dict[str, str], attribute: str, now: datetime) -> bool:
        self.ensure_table()
        return self._conditional_update(
            Key=key,
            UpdateExpression=f"SET {attribute} = :now",
            ConditionExpression=Attr("pk").exists() & Attr(attribute).not_exists(),
            ExpressionAttributeValues={":now": format_timestamp(now)},
        )

    def _conditional_update(self, **kwargs) -> bool:
        try:
            self._table.update_item(**kwargs)
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                return False
            raise PersistenceError(f"Update of {kwargs.get('Key')} failed: {exc}") from exc
        return True


__all__ = ["GiveawayStorage"]
