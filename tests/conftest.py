"""Pytest configuration and shared fixtures."""

import pytest

from activity_notify.config.models import NotificationSettings, SubscriptionSettings
from activity_notify.grouping.store import NotificationStore
from activity_notify.logging.context import clear_log_context
from activity_notify.persistence.database import close_database, init_database
from activity_notify.subscriptions.resolver import SubscriptionResolver

from tests.helpers import Article, Comment, EntityBook, RecordingScheduler, User


@pytest.fixture
def database():
    """Provide a fresh in-memory database."""
    init_database("sqlite:///:memory:")
    yield
    close_database()
    clear_log_context()


@pytest.fixture
def store(database):
    """Notification store on the in-memory database."""
    return NotificationStore(NotificationSettings(opened_index_limit=10))


@pytest.fixture
def resolver(database):
    """Subscription resolver with default-allow settings."""
    return SubscriptionResolver(SubscriptionSettings())


@pytest.fixture
def scheduler():
    """Scheduler that records tasks instead of running them."""
    return RecordingScheduler()


@pytest.fixture
def book():
    """Entity book with two users, an article and its registry."""
    entities = EntityBook()
    alice = User(1, name="Alice", email="alice@example.com")
    bob = User(2, name="Bob", email="bob@example.com")
    article = Article(10, title="Release notes", author=alice)
    entities.add(alice, bob, article)
    return entities


@pytest.fixture
def alice(book):
    return book.entities["user"]["1"]


@pytest.fixture
def bob(book):
    return book.entities["user"]["2"]


@pytest.fixture
def article(book):
    return book.entities["article"]["10"]


@pytest.fixture
def make_comment(book, article, bob):
    """Factory for comments on the article by bob, registered in the book."""
    counter = {"next": 100}

    def _make(**kwargs):
        counter["next"] += 1
        kwargs.setdefault("article", article)
        kwargs.setdefault("author", bob)
        comment = Comment(kwargs.pop("id", counter["next"]), **kwargs)
        book.add(comment)
        return comment

    return _make
