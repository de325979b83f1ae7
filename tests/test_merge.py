"""
Tests for merging imported records into the store
"""
import pytest

from credvault.merge import ImportCandidate, MergeEngine, MergeStats
from conftest import SECRET_A, SECRET_B


@pytest.fixture
def engine(store):
    return MergeEngine(store)


def merge_one(engine, **kwargs):
    kwargs.setdefault('email', 'a@example.com')
    kwargs.setdefault('password', 'pw')
    return engine.merge_one(ImportCandidate(**kwargs))


class TestDecisionTable:
    """One test per combination of existing and imported TOTP"""

    def test_no_match_adds(self, engine, store):
        assert merge_one(engine, totp=SECRET_A, extras=["x"]) == MergeEngine.ADDED
        account = store.get_accounts()[0]
        assert account.totp_secret == SECRET_A
        assert account.extras == ["x"]

    def test_existing_totp_kept_when_import_has_none(self, engine, store):
        account = store.add_account("a@example.com", "pw", SECRET_A, extras=["x"])
        assert merge_one(engine, extras=["y"]) == MergeEngine.SKIPPED
        assert account.totp_secret == SECRET_A
        assert account.extras == ["x"]
        assert len(store) == 1

    def test_totp_adopted_when_existing_has_none(self, engine, store):
        account = store.add_account("a@example.com", "pw", extras=["x"])
        assert merge_one(engine, totp=SECRET_A.lower(), extras=["x", "y"]) == MergeEngine.UPDATED
        assert account.totp_secret == SECRET_A
        assert account.extras == ["x", "y"]
        assert len(store) == 1

    def test_equal_totp_merges_extras(self, engine, store):
        account = store.add_account("a@example.com", "pw", SECRET_A, extras=["x"])
        assert merge_one(engine, totp=SECRET_A, extras=["y"]) == MergeEngine.UPDATED
        assert account.extras == ["x", "y"]

    def test_equal_totp_without_new_extras_skips(self, engine, store):
        store.add_account("a@example.com", "pw", SECRET_A, extras=["x"])
        assert merge_one(engine, totp=SECRET_A.lower(), extras=["x"]) == MergeEngine.SKIPPED

    def test_different_totp_adds_separate_account(self, engine, store):
        original = store.add_account("a@example.com", "pw", SECRET_A)
        assert merge_one(engine, totp=SECRET_B) == MergeEngine.ADDED
        assert len(store) == 2
        assert original.totp_secret == SECRET_A
        assert {a.totp_secret for a in store.get_accounts()} == {SECRET_A, SECRET_B}

    def test_neither_has_totp_merges_extras(self, engine, store):
        account = store.add_account("a@example.com", "pw", extras=["x"])
        assert merge_one(engine, extras=["y"]) == MergeEngine.UPDATED
        assert account.extras == ["x", "y"]

    def test_neither_has_totp_and_nothing_new_skips(self, engine, store):
        store.add_account("a@example.com", "pw", extras=["x"])
        assert merge_one(engine, extras=["x"]) == MergeEngine.SKIPPED

    def test_whitespace_totp_counts_as_absent(self, engine, store):
        account = store.add_account("a@example.com", "pw", SECRET_A)
        assert merge_one(engine, totp="   ") == MergeEngine.SKIPPED
        assert account.totp_secret == SECRET_A


class TestMatching:
    """Tests for how candidates are matched to existing accounts"""

    def test_email_case_is_ignored(self, engine, store):
        store.add_account("a@example.com", "pw")
        assert merge_one(engine, email="A@EXAMPLE.com", extras=["y"]) == MergeEngine.UPDATED
        assert len(store) == 1

    def test_password_must_match_exactly(self, engine, store):
        store.add_account("a@example.com", "pw")
        assert merge_one(engine, password="PW") == MergeEngine.ADDED
        assert len(store) == 2

    def test_first_match_wins(self, engine, store):
        first = store.add_account("a@example.com", "pw", SECRET_A)
        second = store.add_account("a@example.com", "pw", SECRET_B)
        # SECRET_B matches the second account but the first is compared
        assert merge_one(engine, totp=SECRET_B) == MergeEngine.ADDED
        assert first.totp_secret == SECRET_A
        assert second.totp_secret == SECRET_B
        assert len(store) == 3

    def test_tags_only_applied_on_insert(self, engine, store):
        tag = store.create_tag("Work")
        account = store.add_account("a@example.com", "pw")
        merge_one(engine, extras=["y"], tags=[tag.id])
        assert account.tags == []

        merge_one(engine, email="b@example.com", tags=[tag.id])
        assert store.find_by_credentials("b@example.com", "pw").tags == [tag.id]


class TestMerge:
    """Tests for batch merging"""

    def test_reimport_is_idempotent(self, engine, store):
        candidates = [
            ImportCandidate("a@example.com", "pw", SECRET_A, ["x"]),
            ImportCandidate("b@example.com", "pw", "", ["y"]),
        ]
        first = engine.merge(candidates)
        assert (first.added, first.updated, first.skipped) == (2, 0, 0)

        snapshot = store.to_snapshot()
        second = engine.merge(candidates)
        assert (second.added, second.updated, second.skipped) == (0, 0, 2)
        assert store.to_snapshot() == snapshot

    def test_import_never_drops_a_secret(self, engine, store):
        store.add_account("a@example.com", "pw", SECRET_A)
        engine.merge([ImportCandidate("a@example.com", "pw")])
        assert store.get_accounts()[0].totp_secret == SECRET_A

    def test_order_stays_dense(self, populated_store):
        engine = MergeEngine(populated_store)
        engine.merge([ImportCandidate(f"new{i}@example.com", "pw") for i in range(3)])
        assert sorted(a.order for a in populated_store.get_accounts()) == list(range(8))

    def test_rejected_records_are_reported(self, engine, store):
        stats = engine.merge([
            ImportCandidate("a@example.com", "pw"),
            ImportCandidate("bad", "pw", line=7),
            ImportCandidate("c@example.com", "pw", "INVALID"),
            ImportCandidate("d@example.com", "pw", tags=["missing"]),
        ])
        assert stats.added == 1
        assert [e['line'] for e in stats.errors] == [7, 3, 4]
        assert "Tag not found" in stats.errors[2]['reason']
        assert len(store) == 1

    def test_emits_import_event(self, engine, store):
        store.drain_events()
        engine.merge([ImportCandidate("a@example.com", "pw")])
        events = store.drain_events()
        assert events[-1].kind == 'accounts_imported'
        assert events[-1].payload['added'] == 1

    def test_stats_to_dict(self):
        stats = MergeStats(added=1, errors=[{'line': 1, 'reason': 'x'}])
        assert stats.to_dict() == {
            'added': 1, 'updated': 0, 'skipped': 0, 'errors': [{'line': 1, 'reason': 'x'}],
        }
