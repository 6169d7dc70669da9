"""Tests for the tagged sync error types."""

from mirror_sync.core.errors import (
    AdapterError,
    AdapterFailure,
    ErrorKind,
    PersistenceError,
    PreconditionError,
    SyncError,
    describe_error,
)


class TestKinds:
    def test_subclass_kinds(self):
        assert AdapterError("x").kind == ErrorKind.ADAPTER
        assert PreconditionError("x").kind == ErrorKind.PRECONDITION
        assert PersistenceError("x").kind == ErrorKind.PERSISTENCE

    def test_explicit_kind(self):
        assert SyncError("x", ErrorKind.PERSISTENCE).kind == ErrorKind.PERSISTENCE

    def test_adapter_default_reason(self):
        assert AdapterError("x").reason == AdapterFailure.UNAVAILABLE


class TestHints:
    def test_adapter_hint_follows_reason(self):
        err = AdapterError("denied", AdapterFailure.UNAUTHORIZED)
        assert "token" in err.hint

    def test_persistence_hint(self):
        assert "disk" in PersistenceError("write failed").hint


class TestToDict:
    def test_adapter_error(self):
        err = AdapterError("no such page", AdapterFailure.NOT_FOUND)

        assert err.to_dict() == {
            "kind": "adapter",
            "message": "no such page",
            "hint": "Verify the object still exists on the remote side.",
            "reason": "not_found",
        }

    def test_precondition_error(self):
        data = PreconditionError("no target").to_dict()

        assert data["kind"] == "precondition"
        assert "reason" not in data


class TestDescribeError:
    def test_sync_error(self):
        assert describe_error(PersistenceError("full"))["kind"] == "persistence"

    def test_unexpected_error(self):
        assert describe_error(KeyError("k")) == {
            "kind": None,
            "type": "KeyError",
            "message": "'k'",
        }
