"""
tests/unit/test_live.py: The live change feed, snapshots and alert tracker.
"""

from __future__ import annotations

import pytest

from spendsync.app.live import (
    ChangeFeed,
    NotificationAlertTracker,
    NotificationsSnapshot,
    ProjectSnapshot,
    notifications_topic,
    project_topic,
)


# ═══════════════════════════════════════════════════════════════════════════
# ChangeFeed / Subscription
# ═══════════════════════════════════════════════════════════════════════════

class TestChangeFeed:

    def test_publish_reaches_topic_subscribers_only(self):
        feed = ChangeFeed()
        seen_a, seen_b = [], []
        feed.subscribe(project_topic("a"), seen_a.append)
        feed.subscribe(project_topic("b"), seen_b.append)

        delivered = feed.publish(project_topic("a"), "snapshot")

        assert delivered == 1
        assert seen_a == ["snapshot"]
        assert seen_b == []

    def test_cancel_stops_delivery_and_is_idempotent(self):
        feed = ChangeFeed()
        seen = []
        sub = feed.subscribe("t", seen.append)

        sub.cancel()
        sub.cancel()
        feed.publish("t", 1)

        assert seen == []
        assert sub.active is False
        assert feed.has_subscribers("t") is False

    def test_context_manager_cancels_on_exit(self):
        feed = ChangeFeed()
        with feed.subscribe("t", lambda _s: None):
            assert feed.has_subscribers("t")
        assert not feed.has_subscribers("t")

    def test_cancelling_one_keeps_the_other(self):
        feed = ChangeFeed()
        seen = []
        first = feed.subscribe("t", lambda s: seen.append(("first", s)))
        feed.subscribe("t", lambda s: seen.append(("second", s)))

        first.cancel()
        feed.publish("t", 1)

        assert seen == [("second", 1)]

    def test_failing_callback_does_not_block_others(self):
        feed = ChangeFeed()
        seen = []

        def broken(_snapshot):
            raise RuntimeError("view crashed")

        feed.subscribe("t", broken)
        feed.subscribe("t", seen.append)

        assert feed.publish("t", "x") == 2
        assert seen == ["x"]

    def test_publish_without_subscribers(self):
        assert ChangeFeed().publish("nobody", 1) == 0


# ═══════════════════════════════════════════════════════════════════════════
# Snapshots
# ═══════════════════════════════════════════════════════════════════════════

class TestSnapshots:

    def test_project_snapshot_is_read_only(self):
        snapshot = ProjectSnapshot.build("p1", {"name": "Trip"}, [{"id": "e1"}])

        assert snapshot.deleted is False
        assert snapshot.expenses[0]["id"] == "e1"
        with pytest.raises(TypeError):
            snapshot.project["name"] = "Changed"

    def test_snapshot_does_not_follow_later_mutation(self):
        source = {"name": "Trip"}
        snapshot = ProjectSnapshot.build("p1", source, [])
        source["name"] = "Changed"
        assert snapshot.project["name"] == "Trip"

    def test_deleted_project_snapshot(self):
        snapshot = ProjectSnapshot.build("p1", None, [])
        assert snapshot.deleted is True

    def test_notifications_snapshot_counts(self):
        snapshot = NotificationsSnapshot.build("u1", [{"id": "n1"}, {"id": "n2"}])
        assert snapshot.unread_count == 2
        assert notifications_topic("u1") == "notifications:u1"


# ═══════════════════════════════════════════════════════════════════════════
# NotificationAlertTracker
# ═══════════════════════════════════════════════════════════════════════════

def _inbox(*rows):
    return NotificationsSnapshot.build("u1", [{"id": i, "created_at": ts} for i, ts in rows])


class TestAlertTracker:

    def test_newest_alerts_once(self):
        tracker = NotificationAlertTracker()
        snapshot = _inbox(("n2", "2024-01-02T00:00:00"), ("n1", "2024-01-01T00:00:00"))

        assert tracker.observe(snapshot)["id"] == "n2"
        assert tracker.observe(snapshot) is None

    def test_new_arrival_alerts_again(self):
        tracker = NotificationAlertTracker()
        tracker.observe(_inbox(("n1", "2024-01-01T00:00:00")))

        alert = tracker.observe(_inbox(("n2", "2024-01-03T00:00:00"), ("n1", "2024-01-01T00:00:00")))
        assert alert["id"] == "n2"

    def test_dismissing_older_notifications_does_not_alert(self):
        tracker = NotificationAlertTracker()
        tracker.observe(_inbox(("n2", "2024-01-02T00:00:00"), ("n1", "2024-01-01T00:00:00")))

        assert tracker.observe(_inbox(("n2", "2024-01-02T00:00:00"))) is None

    def test_empty_inbox_never_alerts(self):
        assert NotificationAlertTracker().observe(_inbox()) is None
