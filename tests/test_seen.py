"""
Unit tests for the seen-set store.
"""

from concurrent.futures import ThreadPoolExecutor

from rss_subs.seen import SeenSetStore


class TestMarkSeen:
    """Tests for the de-duplication gate."""

    def test_first_false_then_true(self, seen: SeenSetStore) -> None:
        """Test mark_seen reports new, then already seen."""
        assert seen.mark_seen(1, "2024-01-01T00:00:00Z-A") is False
        assert seen.mark_seen(1, "2024-01-01T00:00:00Z-A") is True

    def test_chats_are_independent(self, seen: SeenSetStore) -> None:
        """Test that a key seen by one chat is new for another."""
        seen.mark_seen(1, "k")

        assert seen.mark_seen(2, "k") is False
        assert seen.is_seen(1, "k") is True
        assert seen.is_seen(3, "k") is False

    def test_lazily_creates_chat(self, seen: SeenSetStore) -> None:
        """Test that marking for an unknown chat creates its set."""
        seen.mark_seen(42, "k")

        assert seen.chats() == [42]

    def test_concurrent_marks_admit_one(self, seen: SeenSetStore) -> None:
        """Test that only one of many concurrent marks sees the key as new."""
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: seen.mark_seen(7, "same"), range(200)))

        assert results.count(False) == 1
        assert len(seen) == 1


class TestCheckInitialized:
    """Tests for check_initialized."""

    def test_creates_empty_set(self, seen: SeenSetStore) -> None:
        """Test that a chat gets an empty seen-set."""
        seen.check_initialized(5)

        assert seen.chats() == [5]
        assert seen.dump() == {5: []}

    def test_keeps_existing_set(self, seen: SeenSetStore) -> None:
        """Test that an existing seen-set is not reset."""
        seen.mark_seen(5, "k")
        seen.check_initialized(5)

        assert seen.is_seen(5, "k") is True


class TestDumpLoad:
    """Tests for exporting and loading the store."""

    def test_dump_is_sorted(self, seen: SeenSetStore) -> None:
        """Test that dumped sets are sorted lists."""
        for key in ("c", "a", "b"):
            seen.mark_seen(1, key)

        assert seen.dump() == {1: ["a", "b", "c"]}

    def test_load_rebuilds_sets(self, seen: SeenSetStore) -> None:
        """Test that loading lists produces working sets."""
        seen.load({1: ["a", "b", "a"], "2": []})

        assert seen.mark_seen(1, "a") is True
        assert seen.mark_seen(2, "a") is False
        assert sorted(seen.chats()) == [1, 2]
        assert len(seen) == 3

    def test_load_replaces_content(self, seen: SeenSetStore) -> None:
        """Test that load discards the previous content."""
        seen.mark_seen(9, "old")
        seen.load({1: ["new"]})

        assert seen.chats() == [1]
        assert seen.is_seen(9, "old") is False
