from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import ClassVar

from .errors import InvalidGiveawayError

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# One DynamoDB transaction holds at most 100 actions: the giveaway update plus
# one insert per winner.
MAX_WINNERS = 99


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp in the table's sortable UTC format."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(ISO_FORMAT)


def parse_timestamp(value: object) -> datetime | None:
    if value in (None, ""):
        return None
    raw = str(value)
    try:
        return datetime.strptime(raw, ISO_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed


class GiveawayStatus:
    DRAFT = "DRAFT"
    PENDING_CONFIRM = "PENDING_CONFIRM"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"

    ALL: ClassVar[frozenset[str]] = frozenset(
        {DRAFT, PENDING_CONFIRM, SCHEDULED, ACTIVE, FINISHED, CANCELLED}
    )


class ParticipationStatus:
    JOINED = "JOINED"
    FAILED_CAPTCHA = "FAILED_CAPTCHA"
    FAILED_SUBSCRIPTION = "FAILED_SUBSCRIPTION"
    BANNED = "BANNED"


class PublishResultsMode:
    SEPARATE_POSTS = "SEPARATE_POSTS"
    EDIT_START_POST = "EDIT_START_POST"
    RANDOMIZER = "RANDOMIZER"

    ALL: ClassVar[frozenset[str]] = frozenset(
        {SEPARATE_POSTS, EDIT_START_POST, RANDOMIZER}
    )


def _optional_int(value: object) -> int | None:
    if value in (None, "", "None"):
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):  # pragma: no cover - defensive
        return None


@dataclass(slots=True)
class AnnouncementMessage:
    """A giveaway post the creator flow published into a channel."""

    channel_id: int
    message_id: int

    def to_dict(self) -> dict[str, object]:
        return {"channel_id": str(self.channel_id), "message_id": str(self.message_id)}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> AnnouncementMessage:
        return cls(
            channel_id=int(data["channel_id"]),  # type: ignore[arg-type]
            message_id=int(data["message_id"]),  # type: ignore[arg-type]
        )


@dataclass(slots=True)
class Giveaway:
    giveaway_id: str
    title: str
    owner_id: int
    status: str
    winners_count: int
    start_at: datetime | None = None
    end_at: datetime | None = None
    guild_id: int | None = None
    total_participants: int = 0
    publish_results_mode: str = PublishResultsMode.SEPARATE_POSTS
    results_channel_ids: list[int] = field(default_factory=list)
    announcement_messages: list[AnnouncementMessage] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    finished_at: datetime | None = None
    results_published_at: datetime | None = None
    creator_notified_at: datetime | None = None

    PK_TEMPLATE: ClassVar[str] = "GIVEAWAY#%s"
    SK_VALUE: ClassVar[str] = "META"
    ENTITY: ClassVar[str] = "GIVEAWAY"

    def __post_init__(self) -> None:
        if self.status not in GiveawayStatus.ALL:
            raise InvalidGiveawayError(f"Unknown giveaway status: {self.status}")
        if self.winners_count < 1:
            raise InvalidGiveawayError(
                f"winners_count must be at least 1, got {self.winners_count}"
            )
        if self.publish_results_mode not in PublishResultsMode.ALL:
            raise InvalidGiveawayError(
                f"Unknown publish mode: {self.publish_results_mode}"
            )

    @classmethod
    def key(cls, giveaway_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % giveaway_id, "sk": cls.SK_VALUE}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.giveaway_id)
        item.update(
            {
                "entity": self.ENTITY,
                "giveaway_id": self.giveaway_id,
                "title": self.title,
                "owner_id": str(self.owner_id),
                "status": self.status,
                "winners_count": self.winners_count,
                "total_participants": self.total_participants,
                "publish_results_mode": self.publish_results_mode,
                "results_channel_ids": [str(cid) for cid in self.results_channel_ids],
                "announcement_messages": [
                    message.to_dict() for message in self.announcement_messages
                ],
            }
        )
        if self.guild_id is not None:
            item["guild_id"] = str(self.guild_id)
        for name in (
            "start_at",
            "end_at",
            "created_at",
            "updated_at",
            "finished_at",
            "results_published_at",
            "creator_notified_at",
        ):
            value = getattr(self, name)
            if value is not None:
                item[name] = format_timestamp(value)
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Giveaway:
        giveaway_id = str(item.get("giveaway_id") or str(item["pk"]).split("#", 1)[1])
        messages_data = item.get("announcement_messages") or []
        return cls(
            giveaway_id=giveaway_id,
            title=str(item.get("title", "")),
            owner_id=int(item.get("owner_id", 0)),  # type: ignore[arg-type]
            status=str(item.get("status", GiveawayStatus.DRAFT)),
            winners_count=int(item.get("winners_count", 1)),  # type: ignore[arg-type]
            start_at=parse_timestamp(item.get("start_at")),
            end_at=parse_timestamp(item.get("end_at")),
            guild_id=_optional_int(item.get("guild_id")),
            total_participants=int(item.get("total_participants", 0)),  # type: ignore[arg-type]
            publish_results_mode=str(
                item.get("publish_results_mode") or PublishResultsMode.SEPARATE_POSTS
            ),
            results_channel_ids=[
                int(cid)
                for cid in item.get("results_channel_ids") or []  # type: ignore[union-attr]
            ],
            announcement_messages=[
                AnnouncementMessage.from_dict(data)
                for data in messages_data  # type: ignore[union-attr]
            ],
            created_at=parse_timestamp(item.get("created_at")),
            updated_at=parse_timestamp(item.get("updated_at")),
            finished_at=parse_timestamp(item.get("finished_at")),
            results_published_at=parse_timestamp(item.get("results_published_at")),
            creator_notified_at=parse_timestamp(item.get("creator_notified_at")),
        )

    def result_channel_targets(self) -> list[int]:
        """Channels that should receive result posts, in stable order."""
        if self.results_channel_ids:
            return list(dict.fromkeys(self.results_channel_ids))
        return list(
            dict.fromkeys(message.channel_id for message in self.announcement_messages)
        )


@dataclass(slots=True)
class Participation:
    giveaway_id: str
    user_id: int
    tickets_base: int = 1
    tickets_extra: int = 0
    status: str = ParticipationStatus.JOINED
    display_name: str | None = None
    joined_at: datetime | None = None

    PK_TEMPLATE: ClassVar[str] = "GIVEAWAY#%s"
    SK_PREFIX: ClassVar[str] = "PARTICIPANT#"

    def __post_init__(self) -> None:
        if self.total_tickets < 0:
            raise InvalidGiveawayError(
                f"Participation {self.user_id} has negative tickets "
                f"({self.tickets_base} + {self.tickets_extra})"
            )

    @property
    def total_tickets(self) -> int:
        return self.tickets_base + self.tickets_extra

    @property
    def eligible(self) -> bool:
        return self.status == ParticipationStatus.JOINED

    @classmethod
    def key(cls, giveaway_id: str, user_id: int) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % giveaway_id,
            "sk": f"{cls.SK_PREFIX}{user_id}",
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.giveaway_id, self.user_id)
        item.update(
            {
                "giveaway_id": self.giveaway_id,
                "user_id": str(self.user_id),
                "tickets_base": self.tickets_base,
                "tickets_extra": self.tickets_extra,
                "status": self.status,
            }
        )
        if self.display_name is not None:
            item["display_name"] = self.display_name
        if self.joined_at is not None:
            item["joined_at"] = format_timestamp(self.joined_at)
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Participation:
        sk_value = str(item.get("sk", ""))
        user_raw = item.get("user_id") or sk_value.removeprefix(cls.SK_PREFIX)
        display_name = item.get("display_name")
        return cls(
            giveaway_id=str(
                item.get("giveaway_id") or str(item["pk"]).split("#", 1)[1]
            ),
            user_id=int(user_raw),  # type: ignore[arg-type]
            tickets_base=int(item.get("tickets_base", 0)),  # type: ignore[arg-type]
            tickets_extra=int(item.get("tickets_extra", 0)),  # type: ignore[arg-type]
            status=str(item.get("status", ParticipationStatus.JOINED)),
            display_name=str(display_name) if display_name is not None else None,
            joined_at=parse_timestamp(item.get("joined_at")),
        )


@dataclass(slots=True)
class Winner:
    giveaway_id: str
    user_id: int
    place: int
    tickets_used: int
    selected_at: datetime
    display_name: str | None = None
    notified_at: datetime | None = None

    PK_TEMPLATE: ClassVar[str] = "GIVEAWAY#%s"
    SK_PREFIX: ClassVar[str] = "WINNER#"

    @classmethod
    def key(cls, giveaway_id: str, user_id: int) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % giveaway_id,
            "sk": f"{cls.SK_PREFIX}{user_id}",
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.giveaway_id, self.user_id)
        item.update(
            {
                "giveaway_id": self.giveaway_id,
                "user_id": str(self.user_id),
                "place": self.place,
                "tickets_used": self.tickets_used,
                "selected_at": format_timestamp(self.selected_at),
            }
        )
        if self.display_name is not None:
            item["display_name"] = self.display_name
        if self.notified_at is not None:
            item["notified_at"] = format_timestamp(self.notified_at)
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Winner:
        sk_value = str(item.get("sk", ""))
        user_raw = item.get("user_id") or sk_value.removeprefix(cls.SK_PREFIX)
        display_name = item.get("display_name")
        return cls(
            giveaway_id=str(
                item.get("giveaway_id") or str(item["pk"]).split("#", 1)[1]
            ),
            user_id=int(user_raw),  # type: ignore[arg-type]
            place=int(item["place"]),  # type: ignore[arg-type]
            tickets_used=int(item.get("tickets_used", 0)),  # type: ignore[arg-type]
            selected_at=parse_timestamp(item.get("selected_at")) or utc_now(),
            display_name=str(display_name) if display_name is not None else None,
            notified_at=parse_timestamp(item.get("notified_at")),
        )


__all__ = [
    "ISO_FORMAT",
    "MAX_WINNERS",
    "AnnouncementMessage",
    "Giveaway",
    "GiveawayStatus",
    "Participation",
    "ParticipationStatus",
    "PublishResultsMode",
    "Winner",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
]
