"""Consumer-side message post-processing: type labels, group senders, display strings."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .contacts import GroupMember
from .messages import Message
from .utils import format_timestamp

MESSAGE_TYPE_LABELS: dict[int, str] = {
    1: "text",
    3: "image",
    34: "voice",
    43: "video",
    47: "sticker",
    48: "location",
    49: "share",
    10000: "system",
}

ROLE_SELF = "assistant"
ROLE_OTHER = "user"

MemberLookup = Callable[[str], GroupMember | None]


@dataclass(slots=True, frozen=True)
class EnrichedMessage:
    id: str
    sender_is_self: bool
    role: str
    type_label: str
    datetime: str
    content: str
    sender_name: str
    sender_avatar: str
    message: Message

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender_is_self": self.sender_is_self,
            "role": self.role,
            "type": self.type_label,
            "datetime": self.datetime,
            "content": self.content,
            "sender_name": self.sender_name,
            "sender_avatar": self.sender_avatar,
        }


def type_label(type_code: int) -> str:
    return MESSAGE_TYPE_LABELS.get(type_code, str(type_code))


def split_sender_prefix(content: str, sender_prefix: str) -> tuple[str, str] | None:
    """Split ``"<identifier>:<rest>"`` group content; return None when there is no sender prefix."""
    colon = content.find(":")
    if colon <= 0:
        return None
    identifier = content[:colon]
    if not identifier.startswith(sender_prefix):
        return None
    return identifier, content[colon + 1:]


class MessageEnricher:
    """Turns raw rows into display records, resolving embedded group senders."""

    def __init__(self, lookup_member: MemberLookup, *, sender_prefix: str = "wxid_") -> None:
        self._lookup_member = lookup_member
        self.sender_prefix = sender_prefix

    def enrich(self, message: Message) -> EnrichedMessage:
        content = message.content
        sender_name = ""
        sender_avatar = ""
        split = split_sender_prefix(content, self.sender_prefix)
        if split is not None:
            identifier, rest = split
            member = self._lookup_member(identifier)
            if member is not None:
                sender_avatar = member.avatar_url
                if member.display_name:
                    sender_name = member.display_name
                    content = rest.lstrip("\n")
        return EnrichedMessage(
            id=message.local_id,
            sender_is_self=message.sender_is_self,
            role=ROLE_SELF if message.sender_is_self else ROLE_OTHER,
            type_label=type_label(message.type_code),
            datetime=format_timestamp(message.timestamp),
            content=content,
            sender_name=sender_name,
            sender_avatar=sender_avatar,
            message=message,
        )

    def enrich_all(self, messages: Iterable[Message]) -> list[EnrichedMessage]:
        return [self.enrich(message) for message in messages]


def to_transcript(messages: Sequence[EnrichedMessage], *, self_name: str = "me") -> str:
    """Plain-text transcript, one line per message, for downstream summarisers."""
    lines: list[str] = []
    for message in messages:
        if message.sender_is_self:
            speaker = self_name
        else:
            speaker = message.sender_name or "other"
        lines.append(f"[{message.datetime}] {speaker}: {message.content}")
    return "\n".join(lines)
