"""Unit tests for entity references, configurable values and entity roles."""

from dataclasses import dataclass
from typing import Any, Optional

import pytest
from pydantic import ValidationError

from activity_notify.domain.references import EntityRef, EntityRegistry, UnknownEntityKindError, to_ref
from activity_notify.domain.values import Closure, Literal, MappingValue, MethodRef, resolve_value
from activity_notify.exceptions import NotifiableResolutionError
from activity_notify.persistence import RecordNotFoundError
from activity_notify.roles import Notifiable, NotifiableSettings, Target

from tests.helpers import User


class TestEntityRef:
    """Tests for EntityRef."""

    def test_id_coerced_to_string(self):
        ref = EntityRef(kind="user", id=7)

        assert ref.id == "7"
        assert str(ref) == "user:7"

    def test_refs_are_hashable_and_equal_by_value(self):
        assert {EntityRef(kind="user", id=1), EntityRef(kind="user", id="1")} == {EntityRef(kind="user", id="1")}

    def test_none_id_rejected(self):
        with pytest.raises(ValidationError):
            EntityRef(kind="user", id=None)

    def test_to_ref(self):
        assert to_ref(User(3)) == EntityRef(kind="user", id=3)
        assert to_ref(EntityRef(kind="user", id=3)) == EntityRef(kind="user", id=3)

    def test_to_ref_rejects_plain_objects(self):
        with pytest.raises(TypeError, match="to_entity_ref"):
            to_ref(object())


class TestEntityRegistry:
    """Tests for EntityRegistry."""

    def test_load_passes_string_id(self):
        registry = EntityRegistry()
        seen = []
        registry.register("user", lambda id_: seen.append(id_) or User(int(id_)))

        user = registry.load(EntityRef(kind="user", id=5))

        assert registry.is_registered("user")
        assert not registry.is_registered("team")
        assert seen == ["5"]
        assert user.id == 5

    def test_unknown_kind_raises(self):
        with pytest.raises(UnknownEntityKindError):
            EntityRegistry().load(EntityRef(kind="user", id=1))

    def test_lookup_error_means_missing(self):
        """Test loaders raising LookupError are treated as not found."""
        registry = EntityRegistry()

        def loader(id_):
            raise RecordNotFoundError(f"user {id_} not found")

        registry.register("user", loader)

        assert registry.load(EntityRef(kind="user", id=1)) is None

    def test_other_loader_errors_propagate(self):
        registry = EntityRegistry()
        registry.register("user", lambda id_: 1 / 0)

        with pytest.raises(ZeroDivisionError):
            registry.load(EntityRef(kind="user", id=1))


@dataclass
class Post:
    title: str
    editor: Optional[Any] = None

    def summary(self, key):
        return f"{self.title} ({key})"

    def headline(self):
        return self.title.upper()


class TestConfigValues:
    """Tests for literal, method and closure values."""

    def test_literal(self):
        assert Literal([1, 2]).resolve(Post("a"), "key") == [1, 2]

    def test_method_ref_trims_arguments(self):
        post = Post("hello")

        assert MethodRef("summary").resolve(post, "comment.created", "extra") == "hello (comment.created)"
        assert MethodRef("headline").resolve(post, "comment.created") == "HELLO"

    def test_method_ref_reads_attributes(self):
        """Test non-callable attributes resolve to their value, None included."""
        assert MethodRef("title").resolve(Post("hello")) == "hello"
        assert MethodRef("editor").resolve(Post("hello")) is None

    def test_method_ref_missing_attribute(self):
        with pytest.raises(AttributeError, match="no method 'author'"):
            MethodRef("author").resolve(Post("hello"))

    def test_closure_receives_context_first(self):
        assert Closure(lambda post: post.title).resolve(Post("x"), "key") == "x"
        assert Closure(lambda post, key: key).resolve(Post("x"), "key") == "key"
        assert Closure(lambda *args: len(args)).resolve(Post("x"), "a", "b") == 3

    def test_coerce_mapping(self):
        """Test mappings resolve each value on its own."""
        value = resolve_value({"title": MethodRef("title"), "fixed": 1, "key": lambda post, key: key}, Post("x"), "k")

        assert value == {"title": "x", "fixed": 1, "key": "k"}

    def test_mapping_value(self):
        value = MappingValue({"headline": MethodRef("headline")})

        assert value.resolve(Post("news")) == {"headline": "NEWS"}


class Photo(Notifiable):
    notification_settings = {
        "user": NotifiableSettings(
            targets=lambda photo: photo.viewers,
            parameters=MethodRef("params"),
            group_expiry_delay=MethodRef("expiry"),
            optional_targets=None,
        )
    }

    def __init__(self, id, viewers=None, params=None, expiry=None):
        self.id = id
        self.viewers = viewers
        self.params = params if params is not None else {}
        self.expiry = expiry


class TestNotifiable:
    """Tests for the Notifiable role."""

    def test_kind_and_default_key(self):
        photo = Photo(1)

        assert Photo.kind() == "photo"
        assert photo.default_notification_key() == "photo.default"
        assert photo.to_entity_ref() == EntityRef(kind="photo", id=1)

    def test_unknown_target_kind_is_lenient(self):
        """Test unconfigured target kinds resolve to empty defaults."""
        photo = Photo(1)

        assert list(photo.notification_targets("admin")) == []
        assert photo.notification_group("admin") is None
        assert photo.optional_channels("admin") == []
        assert photo.notification_email_allowed(EntityRef(kind="admin", id=1)) is True

    def test_none_targets_become_empty(self):
        assert list(Photo(1, viewers=None).notification_targets("user")) == []

    def test_parameters_must_be_mapping(self):
        with pytest.raises(NotifiableResolutionError, match="must be a mapping"):
            Photo(1, params=["a"]).notification_parameters("user")

    def test_group_expiry_delay(self):
        assert Photo(1).group_expiry_delay("user") is None
        assert Photo(1, expiry="5m").group_expiry_delay("user") == 300.0
        assert Photo(1, expiry=0).group_expiry_delay("user") == 0.0

    def test_invalid_group_expiry_delay(self):
        with pytest.raises(NotifiableResolutionError, match="Invalid group_expiry_delay"):
            Photo(1, expiry="soon").group_expiry_delay("user")


class TestTarget:
    """Tests for the Target role."""

    def test_target_settings(self):
        user = User(1, name="Alice", email="alice@example.com", accepts_email=False)

        assert user.notification_email() == "alice@example.com"
        assert user.notification_email_allowed(Photo(1), "photo.default") is False
        assert user.batch_notification_email_allowed("photo.default") is True
        assert user.printable_target_name() == "Alice"

    def test_printable_name_falls_back_to_ref(self):
        class Team(Target):
            def __init__(self, id):
                self.id = id

        assert Team(4).printable_target_name() == "team:4"
        assert Team(4).notification_email() is None
