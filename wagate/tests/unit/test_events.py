from __future__ import annotations

import pytest

from wagate.services.events import extract_text, to_inbound_message
from wagate.tests.utils.protocol import GROUP_JID, SENDER_JID, raw_message


def test_own_and_empty_messages_are_ignored() -> None:
    assert to_inbound_message("s1", raw_message("m1", from_me=True)) is None
    assert to_inbound_message("s1", raw_message("m1", text=None)) is None
    assert to_inbound_message("s1", {"key": {"id": "m1"}, "message": {"conversation": "x"}}) is None


def test_inbound_message_fields() -> None:
    message = to_inbound_message("s1", raw_message("m1", timestamp={"low": 1_700_000_000, "high": 0}))

    assert message.id == "m1"
    assert message.session_id == "s1"
    assert message.from_jid == SENDER_JID
    assert message.is_group is False
    assert message.timestamp_ms == 1_700_000_000_000
    assert message.text == "hello"


def test_group_detection_and_generated_id() -> None:
    message = to_inbound_message("s1", raw_message(None, remote_jid=GROUP_JID))

    assert message.is_group is True
    assert message.id.startswith("gen-")


def test_missing_timestamp_uses_ingestion_time() -> None:
    message = to_inbound_message("s1", raw_message("m1", timestamp=None))
    assert message.timestamp_ms > 1_700_000_000_000


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ({"conversation": "plain"}, "plain"),
        ({"extendedTextMessage": {"text": "linked"}}, "linked"),
        ({"imageMessage": {"caption": "photo"}}, "photo"),
        ({"stickerMessage": {}}, None),
    ],
)
def test_extract_text(content, expected) -> None:
    assert extract_text(content) == expected
