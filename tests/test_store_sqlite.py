"""Tests for the SQLite memory store."""

from datetime import date, datetime, timedelta, timezone

import pytest

from grounded_agent.storage.sqlite import SQLiteMemoryStore
from grounded_agent.types import ConversationTurn, MemoryScope, QuotaRecord, RollingSummary, UserProfile


@pytest.fixture
def store(tmp_sqlite_db):
    s = SQLiteMemoryStore(db_path=tmp_sqlite_db)
    yield s
    s.close()


@pytest.fixture
def scope() -> MemoryScope:
    return MemoryScope.thread("alice", "t1")


class TestTurns:
    def test_append_and_list_in_order(self, store, scope, sample_turns):
        for turn in sample_turns:
            store.append_turn(scope, turn)
        turns = store.get_turns(scope)
        assert [t.text for t in turns] == [t.text for t in sample_turns]
        assert turns[0].timestamp == sample_turns[0].timestamp

    def test_limit_returns_most_recent_oldest_first(self, store, scope, sample_turns):
        for turn in sample_turns:
            store.append_turn(scope, turn)
        turns = store.get_turns(scope, limit=2)
        assert [t.text for t in turns] == [sample_turns[2].text, sample_turns[3].text]
        assert store.get_turns(scope, limit=0) == []

    def test_range(self, store, scope, sample_turns):
        for turn in sample_turns:
            store.append_turn(scope, turn)
        turns = store.get_turns_range(scope, 1, 3)
        assert [t.text for t in turns] == [sample_turns[1].text, sample_turns[2].text]
        assert store.get_turns_range(scope, 3, 3) == []

    def test_duplicates_allowed(self, store, scope):
        turn = ConversationTurn(role="user", text="same")
        store.append_turn(scope, turn)
        store.append_turn(scope, turn)
        assert store.count_turns(scope) == 2

    def test_scopes_isolated(self, store, sample_turns):
        store.append_turn(MemoryScope.thread("alice", "t1"), sample_turns[0])
        store.append_turn(MemoryScope.thread("alice", "t2"), sample_turns[1])
        store.append_turn(MemoryScope.group("g1"), sample_turns[2])
        assert store.count_turns(MemoryScope.thread("alice", "t1")) == 1
        assert store.count_turns(MemoryScope.group("g1")) == 1
        assert store.count_turns(MemoryScope.thread("bob", "t1")) == 0

    def test_separator_in_ids_does_not_collide(self, store, sample_turns):
        left = MemoryScope.thread("a:b", "c")
        right = MemoryScope.thread("a", "b:c")
        assert left != right
        assert MemoryScope.thread("a\\", ":b") != MemoryScope.thread("a\\:", "b")
        store.append_turn(left, sample_turns[0])
        assert store.count_turns(left) == 1
        assert store.count_turns(right) == 0


class TestSummaries:
    def test_save_and_replace(self, store, scope):
        assert store.get_summary(scope) is None
        store.save_summary(scope, RollingSummary(summary="first", covers_turns=10))
        store.save_summary(scope, RollingSummary(summary="second", covers_turns=20))
        summary = store.get_summary(scope)
        assert summary.summary == "second"
        assert summary.covers_turns == 20


class TestInteractions:
    def test_nearest_first_with_threshold(self, store):
        store.store_interaction("alice", "trains", "platform 3", [1.0, 0.0])
        store.store_interaction("alice", "weather", "sunny", [0.0, 1.0])
        store.store_interaction("alice", "buses", "stop 4", [0.9, 0.1])
        results = store.search_interactions("alice", [1.0, 0.0], limit=5, threshold=0.75)
        assert [r.user_text for r in results] == ["trains", "buses"]
        assert results[0].similarity == pytest.approx(1.0)

    def test_limit(self, store):
        for i in range(5):
            store.store_interaction("alice", f"q{i}", f"a{i}", [1.0, 0.0])
        assert len(store.search_interactions("alice", [1.0, 0.0], limit=2)) == 2

    def test_scoped_by_identity_and_group(self, store):
        store.store_interaction("alice", "mine", "a", [1.0, 0.0], group_id="g1")
        store.store_interaction("bob", "his", "b", [1.0, 0.0], group_id="g1")
        store.store_interaction("alice", "elsewhere", "c", [1.0, 0.0], group_id="g2")
        assert [r.user_text for r in store.search_interactions("alice", [1.0, 0.0], group_id="g1")] == ["mine"]
        assert len(store.search_interactions("alice", [1.0, 0.0], limit=5)) == 2

    def test_empty_query_vector(self, store):
        store.store_interaction("alice", "q", "a", [1.0])
        assert store.search_interactions("alice", []) == []


class TestQuota:
    def test_round_trip(self, store):
        assert store.get_quota_record("alice") is None
        store.save_quota_record(QuotaRecord("alice", date(2026, 3, 1), 3))
        store.save_quota_record(QuotaRecord("alice", date(2026, 3, 2), 1))
        assert store.get_quota_record("alice") == QuotaRecord("alice", date(2026, 3, 2), 1)


class TestProfiles:
    def test_round_trip_and_replace(self, store):
        assert store.get_profile("alice") is None
        store.save_profile(UserProfile(identity="alice", profile_summary="Likes trains."))
        store.save_profile(UserProfile(
            identity="alice", profile_summary="Likes trains and ramen.",
            preferences={"food": "ramen"}, affinity=0.4, exchanges=7, summarized_at=5,
        ))
        profile = store.get_profile("alice")
        assert profile.profile_summary == "Likes trains and ramen."
        assert profile.preferences == {"food": "ramen"}
        assert profile.affinity == pytest.approx(0.4)
        assert (profile.exchanges, profile.summarized_at) == (7, 5)
        assert profile.group_id == ""

    def test_scoped_by_group(self, store):
        store.save_profile(UserProfile(identity="alice", group_id="g1", affinity=0.8))
        store.save_profile(UserProfile(identity="alice", affinity=-0.6))
        assert store.get_profile("alice", "g1").relationship == "close"
        assert store.get_profile("alice").relationship == "distant"
        assert store.get_profile("alice", "g2") is None


class TestPersistence:
    def test_reopen(self, tmp_sqlite_db, scope):
        s1 = SQLiteMemoryStore(tmp_sqlite_db)
        s1.append_turn(scope, ConversationTurn(
            role="user", text="hello",
            timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(hours=1),
        ))
        s1.close()
        s2 = SQLiteMemoryStore(tmp_sqlite_db)
        assert [t.text for t in s2.get_turns(scope)] == ["hello"]
        s2.close()
