"""Inbound message events and their classification.

The transport turns raw Signal envelopes into MessageEvent instances.
Everything the router needs to know about an event (who wrote it,
where it was delivered, whether it addresses the bot) is derived from
the event itself plus the bot's own account id.

Key classes:
    MessageEvent: One inbound chat message.
    MessageType: Classification tags accepted by Route.messages().

Key functions:
    is_direct_message: Delivered over a private one-to-one channel.
    is_direct_mention: Shared-channel message addressed to the bot.
    strip_direct_mention: Drop a leading @address from message text.
"""

import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    """Classification tags for TypesMatcher."""
    DIRECT_MESSAGE = "direct_message"
    DIRECT_MENTION = "direct_mention"


class Mention(BaseModel):
    """A mention span reported by the transport."""

    start: int = 0
    length: int = 1
    user: str = Field(..., description="Mentioned account id (number or UUID)")
    name: Optional[str] = None


class MessageEvent(BaseModel):
    """A single inbound chat message."""

    text: str = ""
    user: str = Field(..., description="Author account id")
    channel: str = Field(..., description="Group id for shared channels, peer id for private ones")
    private: bool = True
    timestamp: int = 0
    group_id: Optional[str] = None
    mentions: List[Mention] = Field(default_factory=list)


# Account ids may contain dots but never end with one, so a trailing "."
# is punctuation like ":" or ",".
_ID = r"[\w+\-]+(?:\.[\w+\-]+)*"

# Leading address: "@id" or "<@id>", then optional punctuation and whitespace.
_MENTION_PREFIX = re.compile(rf"^(?:<@{_ID}>|@{_ID})[:,.]?\s*")

# After the addressed id: anything that cannot continue an id.
_ID_END = r"(?![\w+\-]|\.[\w+\-])"


def strip_direct_mention(text: str) -> str:
    """Remove a leading direct-mention prefix from message text."""
    if not text:
        return ""
    return _MENTION_PREFIX.sub("", text, count=1)


def is_direct_message(event: Optional[MessageEvent]) -> bool:
    """True if the event arrived over a private one-to-one channel."""
    return event is not None and event.private


def is_direct_mention(event: Optional[MessageEvent], bot_id: str) -> bool:
    """True if a shared-channel event starts by addressing ``bot_id``."""
    if event is None or event.private or not bot_id:
        return False
    escaped = re.escape(bot_id)
    pattern = rf"^(?:<@{escaped}>|@{escaped}){_ID_END}"
    return re.match(pattern, event.text or "") is not None
