"""
Unit tests for the cache store.
"""

import pytest
from unittest.mock import MagicMock

from service_resource_cache.app.caching.keys import prefix_predicate, with_query, without_leading_slash
from service_resource_cache.app.caching.store import CacheEntry, CacheStore


class TestCacheEntry:
    """Test cases for CacheEntry transitions."""

    def test_with_data_clears_error(self):
        entry = CacheEntry(key="/todos", error=RuntimeError("boom"), stale=True)

        updated = entry.with_data([1, 2])

        assert updated.data == [1, 2]
        assert updated.error is None
        assert updated.stale is False
        assert updated.last_updated_at is not None
        assert entry.data is None  # original untouched

    def test_with_error_moves_data_to_previous(self):
        entry = CacheEntry(key="/todos", data=[1], is_validating=True)
        error = RuntimeError("boom")

        failed = entry.with_error(error)

        assert failed.data is None
        assert failed.error is error
        assert failed.previous_data == [1]
        assert failed.is_validating is False

    def test_repeated_failures_keep_previous_data(self):
        entry = CacheEntry(key="/todos", data=[1]).with_error(RuntimeError("a"))

        again = entry.with_error(RuntimeError("b"))

        assert again.previous_data == [1]


class TestCacheStore:
    """Test cases for CacheStore."""

    @pytest.fixture
    def store(self):
        """Create CacheStore instance."""
        return CacheStore()

    def test_get_missing_key(self, store):
        assert store.get("/todos") is None
        assert "/todos" not in store

    def test_set_entry_then_data(self, store):
        store.set("/todos", CacheEntry(key="/todos", data="a"))
        store.set_data("/todos", "b")

        assert store.get("/todos").data == "b"
        assert len(store) == 1

    def test_set_rewrites_mismatched_key(self, store):
        store.set("/a", CacheEntry(key="/b", data=1))

        assert store.get("/a").key == "/a"

    def test_set_function_receives_current_entry(self, store):
        store.set_data("/todos", 1)

        store.set("/todos", lambda entry: entry.with_data(entry.data + 1))

        assert store.get("/todos").data == 2

    def test_set_function_returning_none_does_not_write(self, store):
        store.set_data("/todos", 1)
        callback = MagicMock()
        store.subscribe("/todos", callback)

        store.set("/todos", lambda entry: None)

        assert store.get("/todos").data == 1
        callback.assert_not_called()

    def test_set_data_function_on_missing_key(self, store):
        store.set_data("/counter", lambda data: (data or 0) + 1)

        assert store.get("/counter").data == 1

    def test_subscribers_receive_each_commit(self, store):
        received = []
        store.subscribe("/todos", lambda entry: received.append(entry.data))

        store.set_data("/todos", 1)
        store.set_data("/todos", 2)
        store.set_data("/other", 3)

        assert received == [1, 2]

    def test_multiple_subscribers_per_key(self, store):
        first, second = MagicMock(), MagicMock()
        store.subscribe("/todos", first)
        store.subscribe("/todos", second)

        store.set_data("/todos", 1)

        assert first.call_count == 1
        assert second.call_count == 1
        assert store.subscriber_count("/todos") == 2

    def test_unsubscribe(self, store):
        received = []
        unsubscribe = store.subscribe("/todos", lambda entry: received.append(entry.data))

        store.set_data("/todos", 1)
        unsubscribe()
        store.set_data("/todos", 2)
        unsubscribe()  # idempotent

        assert received == [1]
        assert store.has_subscribers("/todos") is False
        assert store.subscribed_keys() == []

    def test_unsubscribe_only_removes_own_callback(self, store):
        callback = MagicMock()
        store.subscribe("/todos", callback)
        unsubscribe = store.subscribe("/todos", callback)

        unsubscribe()
        store.set_data("/todos", 1)

        assert callback.call_count == 1

    def test_reentrant_writes_are_delivered_in_commit_order(self, store):
        seen = []

        def writer(entry):
            if entry.data == 1:
                store.set_data("/todos", 2)

        store.subscribe("/todos", writer)
        store.subscribe("/todos", lambda entry: seen.append(entry.data))

        store.set_data("/todos", 1)

        assert seen == [1, 2]
        assert store.get("/todos").data == 2

    def test_reentrant_write_to_other_key(self, store):
        seen = []
        store.subscribe("/a", lambda entry: store.set_data("/b", entry.data * 10))
        store.subscribe("/b", lambda entry: seen.append(("b", entry.data)))
        store.subscribe("/a", lambda entry: seen.append(("a", entry.data)))

        store.set_data("/a", 1)

        assert seen == [("a", 1), ("b", 10)]

    def test_failing_subscriber_does_not_block_others(self, store):
        received = []

        def broken(entry):
            raise RuntimeError("subscriber bug")

        store.subscribe("/todos", broken)
        store.subscribe("/todos", lambda entry: received.append(entry.data))

        store.set_data("/todos", 1)
        store.set_data("/todos", 2)

        assert received == [1, 2]

    def test_delete_notifies_none(self, store):
        received = []
        store.set_data("/todos", 1)
        store.subscribe("/todos", received.append)

        assert store.delete("/todos") is True
        assert store.delete("/todos") is False
        assert received == [None]
        assert store.get("/todos") is None

    def test_clear(self, store):
        store.set_data("/a", 1)
        store.set_data("/b", 2)

        store.clear()

        assert store.keys() == []

    def test_set_with_revalidate_calls_revalidator(self, store):
        revalidator = MagicMock(return_value="task")
        store.bind_revalidator(revalidator)

        result = store.set_data("/todos", 1, revalidate=True)

        assert result == "task"
        revalidator.assert_called_once_with("/todos")

    def test_set_with_revalidate_without_revalidator(self, store):
        assert store.set_data("/todos", 1, revalidate=True) is None

    def test_invalidate_all_marks_matching_keys_stale(self, store):
        revalidator = MagicMock(side_effect=lambda key: f"task:{key}" if key == "/todos?page=1" else None)
        store.bind_revalidator(revalidator)
        store.set_data("/todos?page=1", 1)
        store.set_data("/todos/3", 2)
        store.set_data("/users", 3)

        tasks = store.invalidate_all(prefix_predicate("/todos"))

        assert tasks == ["task:/todos?page=1"]
        assert store.get("/todos?page=1").stale is True
        assert store.get("/todos/3").stale is True
        assert store.get("/users").stale is False
        assert revalidator.call_count == 2


class TestCacheKeys:
    """Test cases for key construction."""

    def test_with_query_keeps_insertion_order(self):
        key = with_query("/todos", {"page": 1, "limit": 8, "category": "work"})

        assert key == "/todos?page=1&limit=8&category=work"

    def test_with_query_drops_none_and_encodes(self):
        key = with_query("/todos", {"q": "buy milk", "category": None, "completed": True})

        assert key == "/todos?q=buy+milk&completed=true"

    def test_with_query_without_params(self):
        assert with_query("/todos", {}) == "/todos"
        assert with_query("/todos", {"a": None}) == "/todos"

    def test_with_query_appends_to_existing_query(self):
        assert with_query("/todos?page=1", {"limit": 8}) == "/todos?page=1&limit=8"

    def test_without_leading_slash(self):
        assert without_leading_slash("/todos/1") == "todos/1"
        assert without_leading_slash("todos") == "todos"

    def test_prefix_predicate(self):
        predicate = prefix_predicate("/todos")

        assert predicate("/todos")
        assert predicate("/todos?page=2")
        assert predicate("/todos/stats")
        assert predicate("/todos?page=1&limit=8")
        assert not predicate("/todosx")
        assert not predicate("/users")
