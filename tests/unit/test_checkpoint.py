"""
Unit tests for the checkpoint side-file
"""

import json

import pytest

from core.exceptions import CheckpointError
from ingestion.checkpoint import CheckpointStore, checkpoint_path_for
from schemas.checkpoint import Checkpoint, Phase


class TestCheckpointStore:
    """Test checkpoint load/save/reset"""

    def test_missing_file_returns_fresh_checkpoint(self, checkpoint_store):
        checkpoint = checkpoint_store.load()

        assert checkpoint.phase == Phase.START
        assert checkpoint.kind == "default_cards"
        assert checkpoint.streams == {}
        assert checkpoint.cycle_started_at is not None
        assert not checkpoint_store.path.exists()

    def test_save_then_load(self, checkpoint_store):
        checkpoint = checkpoint_store.load()
        checkpoint.advance(Phase.REFERENCE_LOADED)
        checkpoint.downloads["default_cards"] = True
        progress = checkpoint.stream("default_cards")
        progress.processed_count = 2000
        progress.batches_committed = 2
        progress.last_record_id = "card-2000"

        checkpoint_store.save(checkpoint)
        loaded = checkpoint_store.load()

        assert loaded.phase == Phase.REFERENCE_LOADED
        assert loaded.downloads == {"default_cards": True}
        assert loaded.streams["default_cards"].processed_count == 2000
        assert loaded.streams["default_cards"].last_record_id == "card-2000"
        assert loaded.updated_at is not None

    def test_save_leaves_no_temporary_file(self, checkpoint_store):
        checkpoint_store.save(checkpoint_store.load())

        siblings = [p.name for p in checkpoint_store.path.parent.iterdir()]

        assert checkpoint_store.path.name in siblings
        assert not any(name.endswith(".tmp") for name in siblings)

    def test_file_is_plain_json(self, checkpoint_store):
        checkpoint = checkpoint_store.load()
        checkpoint.advance(Phase.DOWNLOADED)
        checkpoint_store.save(checkpoint)

        document = json.loads(checkpoint_store.path.read_text(encoding="utf-8"))

        assert document["phase"] == "downloaded"
        assert document["kind"] == "default_cards"

    def test_corrupt_file_raises(self, checkpoint_store):
        checkpoint_store.path.write_text("{not json", encoding="utf-8")

        with pytest.raises(CheckpointError) as exc_info:
            checkpoint_store.load()

        assert exc_info.value.context["operation"] == "load"

    def test_invalid_phase_raises(self, checkpoint_store):
        checkpoint_store.path.write_text('{"phase": "half-done"}', encoding="utf-8")

        with pytest.raises(CheckpointError):
            checkpoint_store.load()

    def test_reset_discards_progress(self, checkpoint_store):
        checkpoint = checkpoint_store.load()
        checkpoint.advance(Phase.DONE)
        checkpoint.stream("default_cards").processed_count = 10
        checkpoint_store.save(checkpoint)

        fresh = checkpoint_store.reset()

        assert fresh.phase == Phase.START
        assert checkpoint_store.load().streams == {}

    def test_save_creates_parent_directory(self, tmp_path):
        store = CheckpointStore(checkpoint_path_for(tmp_path / "nested" / "dir", "rulings"), kind="rulings")

        store.save(store.load())

        assert store.path == tmp_path / "nested" / "dir" / ".rulings.checkpoint.json"
        assert store.path.exists()


class TestCheckpointModel:
    """Test phase ordering on the checkpoint model"""

    def test_phases_only_move_forward(self):
        checkpoint = Checkpoint()

        checkpoint.advance(Phase.PRIMARY_LOADED)
        checkpoint.advance(Phase.DOWNLOADED)

        assert checkpoint.phase == Phase.PRIMARY_LOADED
        assert checkpoint.reached(Phase.REFERENCE_LOADED)
        assert not checkpoint.reached(Phase.SECONDARY_LOADED)

    def test_stream_entry_created_on_first_access(self):
        checkpoint = Checkpoint()

        progress = checkpoint.stream("rulings")
        progress.processed_count = 5

        assert checkpoint.streams["rulings"].processed_count == 5
        assert checkpoint.stream("rulings") is progress
