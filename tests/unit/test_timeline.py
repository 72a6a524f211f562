from __future__ import annotations

from chat_sync.domain.entities.message import TOMBSTONE_CONTENT
from chat_sync.domain.value_objects.enums import DeliveryState, SyncState
from chat_sync.services.timeline import Timeline
from tests.conftest import ME, make_message


def _ids(timeline: Timeline) -> list[str]:
    return [m.id for m in timeline]


def test_merge_sorts_by_created_at():
    timeline = Timeline()
    timeline.merge([make_message("b", minute=2), make_message("a", minute=1), make_message("c", minute=3)])

    assert _ids(timeline) == ["a", "b", "c"]


def test_merge_dedupes_last_write_wins_keeping_position():
    timeline = Timeline()
    timeline.merge([make_message("a", minute=1), make_message("b", minute=2, content="old")])

    inserted = timeline.merge([make_message("b", minute=2, content="new"), make_message("c", minute=3)])

    assert inserted == 1
    assert _ids(timeline) == ["a", "b", "c"]
    assert timeline.get("b").content == "new"


def test_older_page_is_prepended():
    timeline = Timeline()
    timeline.merge([make_message("c", minute=3), make_message("d", minute=4)])

    timeline.merge([make_message("a", minute=1), make_message("b", minute=2)])

    assert _ids(timeline) == ["a", "b", "c", "d"]


def test_equal_timestamps_keep_arrival_order():
    timeline = Timeline()
    timeline.upsert(make_message("x", minute=1))
    timeline.upsert(make_message("y", minute=1))

    assert _ids(timeline) == ["x", "y"]


def test_tombstone_is_sticky_against_stale_copies():
    timeline = Timeline()
    timeline.upsert(make_message("a").tombstoned())

    timeline.upsert(make_message("a", content="resurrected"))

    message = timeline.get("a")
    assert message.deleted is True
    assert message.content == TOMBSTONE_CONTENT


def test_delivery_never_regresses_on_upsert():
    timeline = Timeline()
    timeline.upsert(make_message("a", delivery=DeliveryState.READ))

    timeline.upsert(make_message("a", delivery=DeliveryState.SENT))

    assert timeline.get("a").read is True
    assert timeline.get("a").delivered is True


def test_replace_swaps_pending_for_confirmed():
    timeline = Timeline()
    timeline.upsert(make_message("a", minute=1))
    timeline.upsert(make_message("local-1", sender_id=ME, minute=5, client_msg_id="1", sync=SyncState.PENDING))

    timeline.replace("local-1", make_message("srv-1", sender_id=ME, minute=4, client_msg_id="1"))

    assert _ids(timeline) == ["a", "srv-1"]
    assert "local-1" not in timeline


def test_find_by_correlation_ignores_confirmed():
    timeline = Timeline()
    timeline.upsert(make_message("srv-1", sender_id=ME, client_msg_id="1"))

    assert timeline.find_by_correlation("1") is None
