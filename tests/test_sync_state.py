"""Tests for the persisted sync checkpoint."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from cupertino.errors import SyncStateError, SyncStateVersionError
from cupertino.sync.state import STATE_SCHEMA_VERSION, SyncPhase, SyncState


class TestPersistence:
	"""Saving and loading checkpoints."""

	def test_reload_resumes_exact_position(self, tmp_path: Path):
		"""A checkpoint in the middle of a framework reloads to the same file."""
		path = tmp_path / "sync-state.json"
		state = (
			SyncState()
			.starting_phase(SyncPhase.DOCS, frameworks_total=300)
			.starting_framework("swiftui", files_total=1000)
			.updating_file_index(456)
		)
		state.save(path)

		loaded = SyncState.load(path)
		assert loaded.phase == SyncPhase.DOCS
		assert loaded.current_framework == "swiftui"
		assert loaded.current_file_index == 456
		assert loaded.files_total == 1000
		assert loaded == state

	def test_version_mismatch_rejected(self, tmp_path: Path):
		path = tmp_path / "sync-state.json"
		data = json.loads(SyncState().model_dump_json())
		data["schema_version"] = STATE_SCHEMA_VERSION + 1
		path.write_text(json.dumps(data))

		with pytest.raises(SyncStateVersionError) as exc:
			SyncState.load(path)
		assert exc.value.found == STATE_SCHEMA_VERSION + 1

	def test_missing_and_malformed(self, tmp_path: Path):
		with pytest.raises(SyncStateError):
			SyncState.load(tmp_path / "absent.json")

		path = tmp_path / "broken.json"
		path.write_text("{not json")
		with pytest.raises(SyncStateError):
			SyncState.load(path)

		path.write_text("[]")
		with pytest.raises(SyncStateError):
			SyncState.load(path)

	def test_out_of_range_index_rejected_on_load(self, tmp_path: Path):
		path = tmp_path / "sync-state.json"
		data = json.loads(SyncState().model_dump_json())
		data.update(current_file_index=5, files_total=2)
		path.write_text(json.dumps(data))

		with pytest.raises(SyncStateError):
			SyncState.load(path)

	def test_save_is_atomic(self, tmp_path: Path):
		"""No temporary files are left behind and the target is replaced whole."""
		path = tmp_path / "state" / "sync-state.json"
		SyncState().save(path)
		SyncState().starting_phase(SyncPhase.ARCHIVE, 3).save(path)

		assert [p.name for p in path.parent.iterdir()] == ["sync-state.json"]
		assert SyncState.load(path).phase == SyncPhase.ARCHIVE

	def test_exists_and_delete(self, tmp_path: Path):
		path = tmp_path / "sync-state.json"
		assert not SyncState.exists(path)
		SyncState().save(path)
		assert SyncState.exists(path)
		SyncState.delete(path)
		SyncState.delete(path)
		assert not SyncState.exists(path)


class TestTransitions:
	"""Transitions return new states and keep the file index in range."""

	def test_transitions_do_not_mutate(self):
		state = SyncState()
		started = state.starting_phase(SyncPhase.EVOLUTION, 1)
		assert state.phase == SyncPhase.DOCS
		assert started.phase == SyncPhase.EVOLUTION

	def test_file_index_bounds(self):
		state = SyncState().starting_framework("uikit", files_total=10)
		assert state.updating_file_index(10).current_file_index == 10
		with pytest.raises(ValueError):
			state.updating_file_index(11)
		with pytest.raises(ValueError):
			state.updating_file_index(-1)

	def test_construction_validates_index(self):
		with pytest.raises(ValidationError):
			SyncState(current_file_index=3, files_total=1)

	def test_completing_framework(self):
		state = (
			SyncState()
			.starting_phase(SyncPhase.DOCS, 2)
			.starting_framework("swiftui", 5)
			.updating_file_index(5)
			.completing_framework()
		)
		assert state.frameworks_completed == ["swiftui"]
		assert state.current_framework is None
		assert state.current_file_index == 0
		assert state.completing_framework() is state

	def test_completing_phase(self):
		state = SyncState().starting_phase(SyncPhase.DOCS, 1).starting_framework("swiftui", 1)
		done = state.completing_phase()
		assert done.phases_completed == [SyncPhase.DOCS]
		assert done.frameworks_completed == []
		assert done.completing_phase().phases_completed == [SyncPhase.DOCS]


class TestProgress:
	"""Progress reporting."""

	def test_overall_progress(self):
		state = (
			SyncState()
			.starting_phase(SyncPhase.DOCS, 2)
			.starting_framework("swiftui", 10)
			.updating_file_index(5)
		)
		# Half of the first framework of two, in the first of two phases
		assert state.overall_progress(phases_total=2) == pytest.approx(0.125)

	def test_progress_bounds(self):
		assert SyncState().overall_progress() == 0.0
		assert SyncState().overall_progress(phases_total=0) == 0.0
		state = SyncState(phases_completed=list(SyncPhase))
		assert state.overall_progress() == 1.0

	def test_description(self):
		state = SyncState().starting_phase(SyncPhase.DOCS, 3).starting_framework("swiftui", 1000)
		assert state.updating_file_index(456).progress_description == "docs: swiftui (456/1000 files)"
		assert SyncState().starting_phase(SyncPhase.DOCS, 3).progress_description == "docs: 0/3 frameworks"
