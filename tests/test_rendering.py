"""
Tests for message bubbles and the day/sender grouping of a chat.
"""

from datetime import date, datetime, timedelta

import pytest

from devconnect.schemas.message import DeliveryStatus, SenderInfo, message_from_row
from devconnect.services.rendering import (
    CodeBubble, DateSeparator, FileBubble, ImageBubble, TextBubble,
    date_label, file_icon, format_file_size, group_messages, render_message
)

ME = "user-me"
THEM = "user-them"
NOON = datetime(2024, 5, 1, 12, 0)
THEIR_PROFILE = SenderInfo(id=THEM, username="them", full_name="Them Person")


def make_message(content="hello", sender_id=THEM, created_at=NOON, type="text", **fields):
    row = {
        "id": fields.pop("id", f"m-{created_at.isoformat()}-{sender_id}"),
        "chat_id": "chat-1",
        "sender_id": sender_id,
        "content": content,
        "type": type,
        "created_at": created_at,
        **fields,
    }
    sender = THEIR_PROFILE if sender_id == THEM else SenderInfo(id=ME, username="me")
    return message_from_row(row, sender=sender, status=fields.get("status"))


class TestFormatting:
    @pytest.mark.parametrize("size, label", [
        (None, ""),
        (0, ""),
        (512, "512 B"),
        (2048, "2.0 KB"),
        (int(2.5 * 1024 * 1024), "2.5 MB"),
    ])
    def test_file_size(self, size, label):
        assert format_file_size(size) == label

    def test_file_icons(self):
        assert file_icon("report.PDF") == "file-text-red"
        assert file_icon("archive.zip") == "file-archive"
        assert file_icon("notes.txt") == "file"
        assert file_icon(None) == "file"

    def test_date_labels(self):
        today = date(2024, 5, 2)
        assert date_label(today, today) == "Today"
        assert date_label(date(2024, 5, 1), today) == "Yesterday"
        assert date_label(date(2024, 4, 1), today) == "2024-04-01"


class TestRenderMessage:
    def test_text_bubble_finds_links(self):
        bubble = render_message(make_message("docs at https://example.com/a ok"), ME)

        assert isinstance(bubble, TextBubble)
        assert bubble.links == ["https://example.com/a"]
        assert bubble.sender_name == "Them Person"
        assert bubble.time_label == "12:00"

    def test_code_bubble(self):
        bubble = render_message(make_message("a = 1\nb = 2", type="code", language="python"), ME)

        assert isinstance(bubble, CodeBubble)
        assert bubble.language == "python"
        assert bubble.line_count == 2

    def test_image_bubble_strips_the_prefix(self):
        message = make_message("[IMAGE] cat.png", type="image", file_url="http://x/cat.png", file_name="cat.png")

        bubble = render_message(message, ME)

        assert isinstance(bubble, ImageBubble)
        assert bubble.image_url == "http://x/cat.png"
        assert bubble.caption == "cat.png"

    def test_file_bubble(self):
        message = make_message(
            "[FILE] report.pdf", type="file", file_url="http://x/report.pdf", file_name="report.pdf", file_size=2048
        )

        bubble = render_message(message, ME)

        assert isinstance(bubble, FileBubble)
        assert bubble.size_label == "2.0 KB"
        assert bubble.icon == "file-text-red"

    @pytest.mark.parametrize("type, extra, placeholder", [
        ("text", {}, "This message was deleted"),
        ("code", {"language": "go"}, "This code snippet was deleted"),
        ("image", {"file_url": "http://x/a.png"}, "This image was deleted"),
        ("file", {"file_url": "http://x/a.pdf"}, "This file was deleted"),
    ])
    def test_deleted_bubbles_only_carry_a_placeholder(self, type, extra, placeholder):
        bubble = render_message(make_message("secret", type=type, is_deleted=True, **extra), ME)

        assert bubble.is_deleted
        assert bubble.placeholder == placeholder
        assert "secret" not in bubble.model_dump_json()

    def test_own_bubble_shows_status(self):
        bubble = render_message(make_message(sender_id=ME, status=DeliveryStatus.FAILED), ME)

        assert bubble.is_own
        assert bubble.status_icon == "alert"
        assert bubble.can_retry
        assert not bubble.can_recall
        assert bubble.sender_name is None

    def test_status_is_hidden_on_others_messages(self):
        bubble = render_message(make_message(status=DeliveryStatus.DELIVERED), ME)

        assert bubble.status is None
        assert bubble.status_icon is None

    def test_avatar_falls_back_to_generated(self):
        bubble = render_message(make_message(), ME)

        assert bubble.avatar_url == "https://api.dicebear.com/7.x/avatars/svg?seed=them"


class TestGroupMessages:
    def test_separator_before_each_day(self):
        messages = [
            make_message("one", created_at=NOON - timedelta(days=1)),
            make_message("two", created_at=NOON),
        ]

        items = group_messages(messages, ME, today=NOON.date())

        assert [type(item).__name__ for item in items] == ["DateSeparator", "TextBubble", "DateSeparator", "TextBubble"]
        assert [item.label for item in items if isinstance(item, DateSeparator)] == ["Yesterday", "Today"]

    def test_consecutive_messages_share_a_header(self):
        messages = [
            make_message("one", created_at=NOON),
            make_message("two", created_at=NOON + timedelta(minutes=1)),
            make_message("three", sender_id=ME, created_at=NOON + timedelta(minutes=2)),
        ]

        bubbles = [item for item in group_messages(messages, ME) if not isinstance(item, DateSeparator)]

        assert [bubble.show_sender for bubble in bubbles] == [True, False, True]
        assert [bubble.show_timestamp for bubble in bubbles] == [False, True, True]

    def test_long_pause_starts_a_new_group(self):
        messages = [
            make_message("one", created_at=NOON),
            make_message("two", created_at=NOON + timedelta(minutes=10)),
        ]

        bubbles = [item for item in group_messages(messages, ME) if not isinstance(item, DateSeparator)]

        assert [bubble.show_sender for bubble in bubbles] == [True, True]
        assert [bubble.show_timestamp for bubble in bubbles] == [True, True]
