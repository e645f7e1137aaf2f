"""Party selection dialog: option building and reply parsing."""

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .instagram_client import MAX_QUICK_REPLIES, MAX_QUICK_REPLY_TITLE, QuickReply

PAYLOAD_PREFIX = "party"
MIN_FUZZY_LENGTH = 3


@dataclass
class ActiveParty:
    """An active fiesta as offered to the user."""

    id: str
    name: str
    location: Optional[str] = None
    description: Optional[str] = None
    event_date: Optional[datetime] = None
    instagram_handle: Optional[str] = None


@dataclass
class PartyOption:
    """An option stored in social_mentions.party_options_sent."""

    id: str
    name: str
    payload: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PartyOption":
        return cls(id=str(data["id"]), name=str(data.get("name", "")), payload=str(data.get("payload", "")))


class PartySelectionAction(Enum):
    """What to do with a mention that has no fiesta yet."""

    NO_PARTIES = "no_parties"
    AUTO_MATCH = "auto_match"
    ASK_USER = "ask_user"


@dataclass
class PartySelectionDecision:
    action: PartySelectionAction
    parties: list[ActiveParty] = field(default_factory=list)
    matched_party_id: Optional[str] = None


def decide(parties: list[ActiveParty]) -> PartySelectionDecision:
    """Choose the dialog action from the tenant's active parties."""
    if not parties:
        return PartySelectionDecision(PartySelectionAction.NO_PARTIES)
    if len(parties) == 1:
        return PartySelectionDecision(
            PartySelectionAction.AUTO_MATCH, parties, matched_party_id=parties[0].id
        )
    return PartySelectionDecision(PartySelectionAction.ASK_USER, parties)


def build_payload(index: int, party_id: str) -> str:
    """Quick-reply payload for the option at 1-based ``index``."""
    return f"{PAYLOAD_PREFIX}_{index}_{party_id}"


def truncate(text: str, max_length: int) -> str:
    """Shorten text to max_length, ending with an ellipsis when cut."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + "…"


def build_party_options(parties: list[ActiveParty]) -> list[PartyOption]:
    """Options for every party, in order. Not capped: replies may address any of them."""
    return [
        PartyOption(id=party.id, name=party.name, payload=build_payload(index, party.id))
        for index, party in enumerate(parties, start=1)
    ]


def build_quick_replies(
    options: list[PartyOption],
    max_options: int = MAX_QUICK_REPLIES,
    title_length: int = MAX_QUICK_REPLY_TITLE,
) -> list[QuickReply]:
    """Quick replies for the first ``max_options`` options."""
    max_options = min(max_options, MAX_QUICK_REPLIES)
    title_length = min(title_length, MAX_QUICK_REPLY_TITLE)
    return [
        QuickReply(title=truncate(option.name, title_length), payload=option.payload)
        for option in options[:max_options]
    ]


def build_selection_message(parties: list[ActiveParty], header: str) -> str:
    """Message text with a numbered list of parties."""
    lines = []
    for index, party in enumerate(parties, start=1):
        location = f" ({party.location})" if party.location else ""
        lines.append(f"{index}. {party.name}{location}")
    return header + "\n".join(lines)


_NUMBER_PATTERN = re.compile(r"^(\d+)$")


def parse_party_response(
    response_text: Optional[str],
    response_payload: Optional[str],
    options: list[PartyOption],
) -> Optional[PartyOption]:
    """
    Match a user's reply against the options they were offered.

    Strategies, in order:
    1. Exact quick-reply payload.
    2. A bare number, as a 1-based index.
    3. Case-insensitive name match: equal, reply contains name, name
       contains reply (reply of at least 3 characters).
    4. First word of the reply as a prefix of a name.

    Returns:
        The matched option, or None when the reply is ambiguous.

    Examples:
        >>> opts = [PartyOption("a", "Halloween Bash", "party_1_a")]
        >>> parse_party_response("I went to halloween bash!", None, opts).id
        'a'
    """
    if not options:
        return None

    if response_payload:
        for option in options:
            if option.payload == response_payload:
                return option

    cleaned = (response_text or "").strip().lower()
    if not cleaned:
        return None

    number_match = _NUMBER_PATTERN.match(cleaned)
    if number_match:
        index = int(number_match.group(1)) - 1
        if 0 <= index < len(options):
            return options[index]

    for option in options:
        name = option.name.strip().lower()
        if not name:
            continue
        if cleaned == name:
            return option
        if name in cleaned:
            return option
        if len(cleaned) >= MIN_FUZZY_LENGTH and cleaned in name:
            return option

    first_word = cleaned.split()[0]
    if len(first_word) >= MIN_FUZZY_LENGTH:
        for option in options:
            if option.name.strip().lower().startswith(first_word):
                return option

    return None
