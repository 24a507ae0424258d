"""
Tests for RunStore persistence module.

Tests:
1. Run lifecycle (create, get, list)
2. Atomic checkpoints with audit events
3. State reload
4. Error handling and edge cases
"""

import json
import sqlite3
import tempfile
from pathlib import Path

import pytest

from asr.core.enums import DecisionEventType, RunStatus, ScreeningStage, Stage
from asr.core.exceptions import PersistenceError, RunNotFoundError
from asr.core.schemas import DecisionEvent, Record, RunState, load_criteria
from asr.storage import ArtifactStore, RunStore

from conftest import make_vote


@pytest.fixture
def temp_db():
    """Create temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_runs.db"


@pytest.fixture
def store(temp_db):
    """Create RunStore with temporary database."""
    return RunStore(db_path=temp_db)


@pytest.fixture
def state(sample_criteria: dict, sample_record: Record) -> RunState:
    state = RunState(run_id="run-test", criteria=load_criteria(sample_criteria), identified=1)
    state.set_records([sample_record], [])
    return state


class TestRunStoreInit:
    """Tests for RunStore initialization."""

    def test_creates_database_file(self, temp_db):
        RunStore(db_path=temp_db)
        assert temp_db.exists()

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "subdir" / "deep" / "test.db"
            RunStore(db_path=db_path)
            assert db_path.exists()

    def test_default_path_from_settings(self, workspace: Path):
        store = RunStore()
        assert store.db_path == (workspace / "asr.db").resolve()

    def test_reopen_existing_database(self, temp_db, state):
        RunStore(db_path=temp_db).create_run(state)
        assert RunStore(db_path=temp_db).get_run("run-test") is not None


class TestRunLifecycle:
    """Tests for run creation and metadata."""

    def test_create_and_get(self, store, state):
        store.create_run(state)
        run = store.get_run("run-test")
        assert run["run_id"] == "run-test"
        assert run["stage"] == Stage.INIT.value
        assert run["status"] == RunStatus.PENDING.value
        assert run["completed_at"] is None

    def test_duplicate_run_rejected(self, store, state):
        store.create_run(state)
        with pytest.raises(PersistenceError):
            store.create_run(state)

    def test_get_missing_run(self, store):
        assert store.get_run("nope") is None

    def test_list_runs_by_status(self, store, state, sample_criteria):
        store.create_run(state)
        other = RunState(run_id="run-other", criteria=load_criteria(sample_criteria))
        store.create_run(other)
        other.status = RunStatus.FAILED
        store.save_checkpoint(other)

        assert {r["run_id"] for r in store.list_runs()} == {"run-test", "run-other"}
        failed = store.list_runs(status=RunStatus.FAILED)
        assert [r["run_id"] for r in failed] == ["run-other"]


class TestCheckpoints:
    """Tests for save_checkpoint and load_state."""

    def test_round_trip(self, store, state, sample_record):
        store.create_run(state)
        vote = make_vote(sample_record.record_id, "reviewer-1", "include")
        state.add_vote(vote)
        state.stage = Stage.INGESTED
        store.save_checkpoint(state, [DecisionEvent.for_vote(state.run_id, vote)])

        loaded = store.load_state("run-test")
        assert loaded.stage == Stage.INGESTED
        assert loaded.records == state.records
        assert loaded.has_vote(sample_record.record_id, ScreeningStage.ABSTRACT, "reviewer-1")
        assert loaded.criteria == state.criteria

    def test_events_are_appended_in_order(self, store, state, sample_record):
        store.create_run(state)
        for n in range(1, 4):
            vote = make_vote(sample_record.record_id, f"reviewer-{n}", "exclude")
            state.add_vote(vote)
            store.save_checkpoint(state, [DecisionEvent.for_vote(state.run_id, vote)])

        events = store.get_events("run-test")
        assert [e.payload["reviewer_id"] for e in events] == [
            "reviewer-1",
            "reviewer-2",
            "reviewer-3",
        ]
        assert all(e.event_type == DecisionEventType.VOTE_CAST for e in events)
        assert store.count_events("run-test") == 3

    def test_filter_events_by_record(self, store, state, sample_record):
        store.create_run(state)
        vote = make_vote(sample_record.record_id, "reviewer-1", "include")
        store.save_checkpoint(
            state,
            [
                DecisionEvent.for_vote(state.run_id, vote),
                DecisionEvent.for_stage(state.run_id, Stage.INGESTED, state.counters),
            ],
        )
        assert len(store.get_events("run-test", record_id=sample_record.record_id)) == 1
        assert len(store.get_events("run-test")) == 2

    def test_duplicate_event_rolls_back_checkpoint(self, store, state, sample_record):
        """A repeated event key aborts the whole transaction."""
        store.create_run(state)
        vote = make_vote(sample_record.record_id, "reviewer-1", "include")
        event = DecisionEvent.for_vote(state.run_id, vote)
        store.save_checkpoint(state, [event])

        state.stage = Stage.ABSTRACT_SCREENING
        with pytest.raises(PersistenceError):
            store.save_checkpoint(state, [event])

        assert store.load_state("run-test").stage == Stage.INIT
        assert store.count_events("run-test") == 1

    def test_failure_events_have_no_key(self, store, state):
        store.create_run(state)
        for _ in range(2):
            store.save_checkpoint(
                state, [DecisionEvent.for_failure(state.run_id, Stage.INGESTED, ValueError("x"))]
            )
        assert store.count_events("run-test") == 2

    def test_completed_at_set_on_completion(self, store, state):
        store.create_run(state)
        state.status = RunStatus.COMPLETED
        store.save_checkpoint(state)
        assert store.get_run("run-test")["completed_at"] is not None

    def test_error_message_persisted(self, store, state):
        store.create_run(state)
        state.status = RunStatus.FAILED
        state.error_message = "OracleCallError: timeout"
        store.save_checkpoint(state)
        assert store.get_run("run-test")["error_message"] == "OracleCallError: timeout"


class TestErrorHandling:
    """Tests for missing and corrupt runs."""

    def test_checkpoint_unknown_run(self, store, state):
        with pytest.raises(RunNotFoundError):
            store.save_checkpoint(state)

    def test_load_unknown_run(self, store):
        with pytest.raises(RunNotFoundError):
            store.load_state("missing")

    def test_load_corrupt_state(self, store, state, temp_db):
        store.create_run(state)
        with sqlite3.connect(temp_db) as conn:
            conn.execute(
                "UPDATE runs SET state_json = ? WHERE run_id = ?",
                (json.dumps({"run_id": "run-test"}), "run-test"),
            )
        with pytest.raises(PersistenceError):
            store.load_state("run-test")

    def test_load_state_with_duplicate_votes(self, store, state, sample_record, temp_db):
        store.create_run(state)
        data = state.model_dump(mode="json")
        vote = make_vote(sample_record.record_id, "reviewer-1", "include").model_dump(mode="json")
        data["votes"] = [vote, vote]
        with sqlite3.connect(temp_db) as conn:
            conn.execute(
                "UPDATE runs SET state_json = ? WHERE run_id = ?",
                (json.dumps(data), "run-test"),
            )
        with pytest.raises(PersistenceError):
            store.load_state("run-test")


class TestArtifactStore:
    """Tests for filesystem exports."""

    def test_export_run(self, tmp_path, store, state, sample_record):
        store.create_run(state)
        vote = make_vote(sample_record.record_id, "reviewer-1", "include")
        store.save_checkpoint(state, [DecisionEvent.for_vote(state.run_id, vote)])

        artifacts = ArtifactStore(base_path=tmp_path / "exports")
        run_dir = artifacts.export_run(state, store.get_events(state.run_id))

        assert run_dir == tmp_path / "exports" / "run-test"
        exported = json.loads((run_dir / "state.json").read_text())
        assert exported["run_id"] == "run-test"
        assert exported["records"][0]["record_id"] == sample_record.record_id

        lines = (run_dir / "decision_log.jsonl").read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["event_type"] == "vote_cast"

        funnel = json.loads((run_dir / "funnel.json").read_text())
        assert set(funnel) >= {"identified", "deduplicated", "included"}
