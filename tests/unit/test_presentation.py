from __future__ import annotations

from datetime import date, timedelta, timezone

from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.domain.value_objects.enums import DeliveryState, SyncState
from chat_sync.services.presentation import (
    DateSeparator,
    MessageRow,
    build_rows,
    date_label,
    delivery_badge,
)
from tests.conftest import GROUP, ME, PEER, make_message

TODAY = date(2024, 3, 5)


def test_date_label():
    assert date_label(TODAY, TODAY) == "Today"
    assert date_label(TODAY - timedelta(days=1), TODAY) == "Yesterday"
    assert date_label(date(2024, 2, 29), TODAY) == "29 Feb 2024"


def test_delivery_badge_only_for_own_messages():
    assert delivery_badge(make_message("m1", sender_id=PEER), ME) is None
    assert delivery_badge(make_message("m2", sender_id=ME, delivery=DeliveryState.READ), ME) == "read"
    assert delivery_badge(make_message("m3", sender_id=ME, sync=SyncState.PENDING), ME) == "pending"


def test_delivery_badge_hidden_for_confirmed_group_messages():
    group = ConversationRef.group(GROUP)
    assert delivery_badge(make_message("m1", sender_id=ME, conversation=group), ME) is None
    failed = make_message("m2", sender_id=ME, conversation=group, sync=SyncState.FAILED)
    assert delivery_badge(failed, ME) == "failed"


def test_build_rows_inserts_separator_per_day():
    messages = [
        make_message("a", minute=-24 * 60),
        make_message("b", minute=0),
        make_message("c", minute=5, sender_id=ME),
    ]

    rows = build_rows(messages, ME, TODAY, tz=timezone.utc)

    assert rows[0] == DateSeparator("Yesterday")
    assert isinstance(rows[1], MessageRow) and rows[1].message.id == "a"
    assert rows[2] == DateSeparator("Today")
    assert [r.mine for r in rows[3:]] == [False, True]
    assert rows[4].badge == "sent"
