"""Tests for the notification store and bundling engine."""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from activity_notify.config.models import NotificationSettings
from activity_notify.domain.references import EntityRef
from activity_notify.grouping.store import RESERVED_OPTIONS, NotificationStore
from activity_notify.persistence import NotificationRepository, close_database, init_database
from activity_notify.roles import Notifiable, NotifiableSettings

from tests.helpers import User


class TestStore:
    """Tests for storing notifications."""

    def test_store_resolves_notifiable_settings(self, store, alice, bob, make_comment):
        """Test key, group, notifier and parameters come from the notifiable."""
        comment = make_comment(body="First!")

        notification = store.store(alice, comment)

        assert notification.id is not None
        assert notification.target == EntityRef(kind="user", id="1")
        assert notification.notifiable == EntityRef(kind="comment", id=str(comment.id))
        assert notification.key == "comment.default"
        assert notification.group == EntityRef(kind="article", id="10")
        assert notification.notifier == EntityRef(kind="user", id="2")
        assert notification.parameters == {"body": "First!"}
        assert notification.is_group_owner
        assert notification.is_unopened

    def test_store_options_override_settings(self, store, alice, make_comment):
        """Test explicit options win over notifiable settings."""
        comment = make_comment()

        notification = store.store(alice, comment, {"key": "comment.reply", "notifier": alice})

        assert notification.key == "comment.reply"
        assert notification.notifier == EntityRef(kind="user", id="1")

    def test_extra_options_are_stored_as_parameters(self, store, alice, make_comment):
        """Test unreserved option keys land in parameters; notifiable parameters win."""
        comment = make_comment(body="from notifiable")

        notification = store.store(
            alice,
            comment,
            {"parameters": {"a": 1, "body": "explicit"}, "b": 2, "send_email": False},
        )

        assert notification.parameters == {"a": 1, "b": 2, "body": "from notifiable"}
        assert "send_email" in RESERVED_OPTIONS

    def test_store_accepts_entity_ref_target(self, store, make_comment):
        """Test targets may be given as references."""
        comment = make_comment()

        notification = store.store(EntityRef(kind="user", id=9), comment)

        assert notification.target == EntityRef(kind="user", id="9")


class TestBundling:
    """Tests for owner election."""

    def test_second_notification_joins_unopened_owner(self, store, alice, make_comment):
        """Test notifications sharing (target, kind, key, group) are bundled."""
        first = store.store(alice, make_comment())
        second = store.store(alice, make_comment())
        third = store.store(alice, make_comment())

        assert first.is_group_owner
        assert second.group_owner_id == first.id
        assert third.group_owner_id == first.id
        assert store.member_count(first) == 2
        assert store.group_notification_count(first) == 3

    def test_no_group_means_no_bundling(self, store, alice, make_comment):
        """Test notifications without a group always stand alone."""
        first = store.store(alice, make_comment(article=None))
        second = store.store(alice, make_comment(article=None))

        assert first.is_group_owner
        assert second.is_group_owner

    def test_bundles_are_per_target_and_key(self, store, alice, bob, make_comment):
        """Test other targets and keys start their own bundles."""
        owner = store.store(alice, make_comment())
        other_target = store.store(bob, make_comment())
        other_key = store.store(alice, make_comment(), {"key": "comment.reply"})

        assert owner.is_group_owner
        assert other_target.is_group_owner
        assert other_key.is_group_owner

    def test_opened_owner_closes_bundle(self, store, alice, make_comment):
        """Test a notification after the owner is read starts a new bundle."""
        owner = store.store(alice, make_comment())
        store.open(owner)

        fresh = store.store(alice, make_comment())

        assert fresh.is_group_owner
        assert fresh.id != owner.id

    def test_latest_open_owner_is_elected(self, store, alice, make_comment):
        """Test the most recently created unopened owner receives new members."""
        older = store.store(alice, make_comment(), {"group_expiry_delay": 0})
        newer = store.store(alice, make_comment(), {"group_expiry_delay": 0})

        member = store.store(alice, make_comment())

        assert older.is_group_owner
        assert newer.is_group_owner
        assert member.group_owner_id == newer.id

    def test_group_expiry_delay_zero_never_bundles(self, store, alice, make_comment):
        """Test an expired window starts a new owner."""
        store.store(alice, make_comment())

        fresh = store.store(alice, make_comment(), {"group_expiry_delay": 0})

        assert fresh.is_group_owner

    def test_group_expiry_delay_inside_window_bundles(self, store, alice, make_comment):
        """Test owners created inside the window still take members."""
        owner = store.store(alice, make_comment())

        member = store.store(alice, make_comment(), {"group_expiry_delay": "1h"})

        assert member.group_owner_id == owner.id

    def test_group_expiry_delay_from_settings(self, store, alice, article, book):
        """Test the window can come from notifiable settings."""

        class Like(Notifiable):
            notification_settings = {
                "user": NotifiableSettings(group=article, group_expiry_delay=timedelta(0)),
            }

            def __init__(self, id):
                self.id = id

        first = store.store(alice, Like(1))
        second = store.store(alice, Like(2))

        assert first.is_group_owner
        assert second.is_group_owner


class TestConcurrentBundling:
    """Owner election when stores for one bundle overlap."""

    @pytest.fixture
    def file_store(self, tmp_path):
        init_database(f"sqlite:///{tmp_path / 'bundles.db'}")
        yield NotificationStore(NotificationSettings())
        close_database()

    def test_overlapping_stores_elect_one_owner(self, file_store, alice, make_comment, monkeypatch):
        """Test the second store waits for the first and joins its bundle."""
        find_open_owner = NotificationRepository.find_open_owner

        def slow_find_open_owner(repo, *args, **kwargs):
            owner = find_open_owner(repo, *args, **kwargs)
            # Keep the gap between lookup and insert open long enough to overlap
            time.sleep(0.2)
            return owner

        monkeypatch.setattr(NotificationRepository, "find_open_owner", slow_find_open_owner)
        comments = [make_comment(), make_comment()]
        start = threading.Barrier(len(comments))
        stored, errors = [], []

        def worker(comment):
            start.wait(timeout=5)
            try:
                stored.append(file_store.store(alice, comment))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(comment,)) for comment in comments]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert len(stored) == 2
        owners = file_store.unopened_index(alice)
        assert len(owners) == 1
        assert sorted(n.is_group_member for n in stored) == [False, True]
        assert all(n.group_owner_id in (None, owners[0].id) for n in stored)


class TestOpening:
    """Tests for opening notifications."""

    def test_open_owner_opens_members(self, store, alice, make_comment):
        """Test opening an owner opens its unopened members in one go."""
        owner = store.store(alice, make_comment())
        member = store.store(alice, make_comment())

        affected = store.open(owner)

        assert affected == 2
        assert store.reload(owner).is_opened
        assert store.reload(member).is_opened

    def test_open_without_members(self, store, alice, make_comment):
        """Test include_members=False leaves members unopened."""
        owner = store.store(alice, make_comment())
        member = store.store(alice, make_comment())

        assert store.open(owner, include_members=False) == 1
        assert store.reload(member).is_unopened

    def test_open_is_idempotent(self, store, alice, make_comment):
        """Test re-opening keeps the original opened_at."""
        notification = store.store(alice, make_comment())
        first_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

        store.open(notification, at=first_at)
        affected = store.open(notification, at=first_at + timedelta(days=1))

        assert affected == 0
        assert store.reload(notification).opened_at == first_at

    def test_open_missing_notification_returns_zero(self, store):
        """Test opening a deleted notification is a no-op."""
        assert store.open(12345) == 0

    def test_open_all_of_with_filters(self, store, alice, make_comment):
        """Test bulk open honours key filter."""
        store.store(alice, make_comment(article=None))
        store.store(alice, make_comment(article=None), {"key": "comment.reply"})

        assert store.open_all_of(alice, filtered_by_key="comment.reply") == 1
        assert store.unopened_count(alice) == 1
        assert store.open_all_of(alice, filtered_by_type="comment") == 1
        assert store.unopened_count(alice) == 0


class TestIndexes:
    """Tests for index queries and member counts."""

    def test_unopened_index_lists_owners_only(self, store, alice, make_comment):
        """Test members are hidden behind their owner."""
        owner = store.store(alice, make_comment())
        store.store(alice, make_comment())
        standalone = store.store(alice, make_comment(article=None))

        index = store.unopened_index(alice)

        assert [n.id for n in index] == [standalone.id, owner.id]
        assert store.unopened_count(alice) == 2

    def test_notification_index_tops_up_with_opened(self, store, alice, make_comment):
        """Test unopened owners come first, then opened owners."""
        read = store.store(alice, make_comment(article=None))
        store.open(read)
        unread = store.store(alice, make_comment(article=None))

        index = store.notification_index(alice, limit=5)

        assert [n.id for n in index] == [unread.id, read.id]

    def test_opened_member_counts(self, store, alice, make_comment):
        """Test opened bundles count their opened members."""
        owner = store.store(alice, make_comment())
        store.store(alice, make_comment())
        store.open(owner)

        reloaded = store.reload(owner)

        assert store.member_count(reloaded) == 1
        assert store.member_counts(alice, opened=True) == {owner.id: 1}

    def test_member_count_resolves_owner_of_member(self, store, alice, make_comment):
        """Test counting through a member gives the owner's count."""
        owner = store.store(alice, make_comment())
        member = store.store(alice, make_comment())

        assert store.member_count(member) == 1
        assert store.latest_group_member(owner).id == member.id

    def test_member_count_scope_reuses_aggregate(self, store, alice, make_comment):
        """Test counts are cached in scope and refreshed after writes."""
        owner = store.store(alice, make_comment())

        with store.member_count_scope():
            assert store.member_count(owner) == 0
            store.store(alice, make_comment())
            assert store.member_count(owner) == 1

    def test_group_notifier_counts(self, store, alice, bob, book, make_comment):
        """Test distinct notifier counts exclude the owner's notifier."""
        carol = User(3, name="Carol")
        book.add(carol)
        owner = store.store(alice, make_comment(author=bob))
        store.store(alice, make_comment(author=bob))
        store.store(alice, make_comment(author=carol))
        store.store(alice, make_comment(author=carol))

        assert store.member_count(owner) == 3
        assert store.group_member_notifier_count(owner) == 1
        assert store.group_notifier_count(owner) == 2

    def test_group_member_exists(self, store, alice, make_comment):
        """Test member existence is checked across owners."""
        lonely = store.store(alice, make_comment(article=None))
        assert store.group_member_exists([lonely]) is False

        owner = store.store(alice, make_comment())
        store.store(alice, make_comment())
        assert store.group_member_exists([lonely, owner]) is True


class TestRemoval:
    """Tests for deleting and regrouping."""

    def test_remove_from_group_promotes_earliest_member(self, store, alice, make_comment):
        """Test the earliest member takes over the bundle."""
        owner = store.store(alice, make_comment())
        first_member = store.store(alice, make_comment())
        second_member = store.store(alice, make_comment())

        promoted = store.remove_from_group(owner)
        store.delete(owner)

        assert promoted.id == first_member.id
        assert promoted.is_group_owner
        assert store.reload(second_member).group_owner_id == first_member.id
        assert store.member_count(promoted) == 1

    def test_remove_from_group_without_members(self, store, alice, make_comment):
        """Test an owner without members has nobody to promote."""
        owner = store.store(alice, make_comment())

        assert store.remove_from_group(owner) is None

    def test_delete_and_reload(self, store, alice, make_comment):
        """Test deleted notifications reload as None."""
        notification = store.store(alice, make_comment())

        assert store.delete(notification) is True
        assert store.reload(notification) is None
        assert store.delete(notification) is False

    def test_reload_unsaved_notification_raises(self, store):
        """Test unsaved notifications have no identity."""
        from activity_notify.domain.models import Notification

        unsaved = Notification(
            target=EntityRef(kind="user", id=1),
            notifiable=EntityRef(kind="comment", id=1),
            key="comment.default",
        )

        with pytest.raises(ValueError):
            store.reload(unsaved)
