"""Unit tests for the plain text renderer."""

from datetime import timedelta

import pytest

from notifier.notifications.models import MessageKind, MessagePriority
from notifier.notifications.rendering import PlainTextRenderer


@pytest.mark.unit
class TestPlainTextRenderer:
    def test_single_message(self, message_factory):
        message = message_factory(
            title="TOKEN_X breakout",
            content="Volume up 340%",
            entity_key="TOKEN_X",
            priority=MessagePriority.HIGH,
        )

        payload = PlainTextRenderer().render(message)

        assert payload == {
            "title": "TOKEN_X breakout",
            "content": "Volume up 340%",
            "kind": "token_alert",
            "priority": "high",
            "entity_key": "TOKEN_X",
        }

    def test_one_member_batch_renders_as_single(self, message_factory):
        message = message_factory(title="Only one")

        assert PlainTextRenderer().render([message])["title"] == "Only one"

    def test_batch_summary(self, message_factory):
        first = message_factory(entity_key="A")
        second = message_factory(entity_key="B")
        second = second.model_copy(
            update={"created_at": first.created_at + timedelta(seconds=42)}
        )

        payload = PlainTextRenderer().render([first, second])

        assert payload["title"] == "2 token_alert notifications (42s window)"
        assert payload["content"] == f"- {first.title}\n- {second.title}"
        assert payload["count"] == 2
        assert payload["entity_keys"] == ["A", "B"]

    def test_batch_preview_is_truncated(self, message_factory):
        members = [message_factory() for _ in range(7)]

        payload = PlainTextRenderer().render(members)

        lines = payload["content"].split("\n")
        assert len(lines) == 6
        assert lines[-1] == "... and 2 more"

    def test_mixed_kinds(self, message_factory):
        members = [
            message_factory(kind=MessageKind.TOKEN_ALERT),
            message_factory(kind=MessageKind.ERROR_ALERT),
        ]

        payload = PlainTextRenderer().render(members)

        assert payload["kind"] == "mixed"
        assert payload["title"].startswith("2 mixed notifications")

    def test_empty_batch_rejected(self):
        with pytest.raises(ValueError):
            PlainTextRenderer().render([])
