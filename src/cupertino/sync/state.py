"""
Sync State - persisted checkpoint for resumable remote indexing.

Progress is tracked down to the file inside the current framework, so an
interrupted sync picks up at the exact file where it stopped. Transitions
return new state objects; the indexer saves after each one.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .. import __version__
from ..errors import SyncStateError, SyncStateVersionError

logger = logging.getLogger(__name__)

# Bump whenever the checkpoint layout or its meaning changes
STATE_SCHEMA_VERSION = 1


class SyncPhase(str, Enum):
	"""Sync phases, in the order they run."""
	DOCS = "docs"
	EVOLUTION = "evolution"
	ARCHIVE = "archive"
	SWIFT_ORG = "swift-org"
	PACKAGES = "packages"
	SAMPLES = "samples"


class SyncState(BaseModel):
	"""Checkpoint of a sync run, written after every file."""
	schema_version: int = Field(default=STATE_SCHEMA_VERSION)
	version: str = Field(default=__version__, description="Version of the app that wrote the state")
	started: str = Field(default_factory=lambda: datetime.now().isoformat())
	phase: SyncPhase = Field(default=SyncPhase.DOCS)
	phases_completed: list[SyncPhase] = Field(default_factory=list)
	current_framework: Optional[str] = Field(default=None)
	frameworks_completed: list[str] = Field(default_factory=list)
	frameworks_total: int = Field(default=0, ge=0)
	current_file_index: int = Field(default=0, ge=0)
	files_total: int = Field(default=0, ge=0)

	@model_validator(mode="after")
	def _check_file_index(self) -> "SyncState":
		if self.current_file_index > self.files_total:
			raise ValueError(
				f"current_file_index {self.current_file_index} exceeds files_total {self.files_total}"
			)
		return self

	# -- transitions -----------------------------------------------------

	def starting_phase(self, phase: SyncPhase, frameworks_total: int) -> "SyncState":
		return self.model_copy(update={
			"phase": phase,
			"current_framework": None,
			"frameworks_completed": [],
			"frameworks_total": frameworks_total,
			"current_file_index": 0,
			"files_total": 0,
		})

	def starting_framework(self, name: str, files_total: int) -> "SyncState":
		return self.model_copy(update={
			"current_framework": name,
			"current_file_index": 0,
			"files_total": files_total,
		})

	def updating_file_index(self, index: int) -> "SyncState":
		if index < 0 or index > self.files_total:
			raise ValueError(f"file index {index} outside 0..{self.files_total}")
		return self.model_copy(update={"current_file_index": index})

	def completing_framework(self) -> "SyncState":
		if self.current_framework is None:
			return self
		return self.model_copy(update={
			"current_framework": None,
			"frameworks_completed": self.frameworks_completed + [self.current_framework],
			"current_file_index": 0,
			"files_total": 0,
		})

	def completing_phase(self) -> "SyncState":
		completed = list(self.phases_completed)
		if self.phase not in completed:
			completed.append(self.phase)
		return self.model_copy(update={
			"phases_completed": completed,
			"current_framework": None,
			"frameworks_completed": [],
			"frameworks_total": 0,
			"current_file_index": 0,
			"files_total": 0,
		})

	# -- progress --------------------------------------------------------

	def overall_progress(self, phases_total: int = len(SyncPhase)) -> float:
		"""Fraction of the whole run completed, 0.0 to 1.0."""
		if phases_total <= 0:
			return 0.0

		phase_progress = 0.0
		if self.frameworks_total > 0:
			file_progress = (
				self.current_file_index / self.files_total if self.files_total > 0 else 0.0
			)
			phase_progress = (len(self.frameworks_completed) + file_progress) / self.frameworks_total

		return min(1.0, (len(self.phases_completed) + phase_progress) / phases_total)

	@property
	def progress_description(self) -> str:
		if self.current_framework:
			return (
				f"{self.phase.value}: {self.current_framework} "
				f"({self.current_file_index}/{self.files_total} files)"
			)
		return f"{self.phase.value}: {len(self.frameworks_completed)}/{self.frameworks_total} frameworks"

	# -- persistence -----------------------------------------------------

	def save(self, path: Path) -> None:
		"""
		Atomically write the state as JSON.

		Raises:
			SyncStateError: The file could not be written.
		"""
		path = Path(path)
		try:
			path.parent.mkdir(parents=True, exist_ok=True)
			fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
			try:
				with os.fdopen(fd, "w", encoding="utf-8") as f:
					f.write(self.model_dump_json(indent=2))
				os.replace(tmp_name, path)
			except BaseException:
				if os.path.exists(tmp_name):
					os.unlink(tmp_name)
				raise
		except OSError as e:
			logger.error(f"Failed to save sync state to {path}: {e}")
			raise SyncStateError(f"Failed to save sync state to {path}: {e}") from e

	@classmethod
	def load(cls, path: Path) -> "SyncState":
		"""
		Read a checkpoint written by `save`.

		Raises:
			SyncStateVersionError: The file was written with another schema version.
			SyncStateError: The file is missing, unreadable or malformed.
		"""
		path = Path(path)
		try:
			raw = json.loads(path.read_text(encoding="utf-8"))
		except (OSError, json.JSONDecodeError) as e:
			raise SyncStateError(f"Cannot read sync state {path}: {e}") from e

		if not isinstance(raw, dict):
			raise SyncStateError(f"Sync state {path} is not a JSON object")

		found = raw.get("schema_version")
		if found != STATE_SCHEMA_VERSION:
			raise SyncStateVersionError(found if isinstance(found, int) else -1, STATE_SCHEMA_VERSION)

		try:
			return cls.model_validate(raw)
		except ValidationError as e:
			raise SyncStateError(f"Sync state {path} is invalid: {e}") from e

	@staticmethod
	def exists(path: Path) -> bool:
		return Path(path).exists()

	@staticmethod
	def delete(path: Path) -> None:
		try:
			Path(path).unlink(missing_ok=True)
		except OSError as e:
			raise SyncStateError(f"Failed to delete sync state {path}: {e}") from e
