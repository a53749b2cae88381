"""
Remote Indexer - resumable sync from a remote content tree into the indexes.

Features:
- Ordered phases, each listing its items ("frameworks") up front
- Concurrent fetches per item through a bounded semaphore pool
- Results consumed in file order so the checkpoint is always contiguous
- Checkpoint saved after every file; resume continues at the exact file
- Retries with backoff for transient failures, 404s recorded and skipped
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..errors import (
	FetchError,
	InvalidDocumentError,
	SyncCancelledError,
	SyncStateError,
	SyncStateVersionError,
)
from ..models import SampleProject
from ..search.index import SearchIndex
from ..search.samples import SampleIndex
from .fetcher import ContentFetcher, FetchResult, FetchStatus, RemoteFile, RetryPolicy
from .state import SyncPhase, SyncState
from .transform import (
	PHASES,
	PhaseSpec,
	first_heading,
	is_doc_file,
	title_from_filename,
	to_document,
	to_sample_file,
)

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 50
DEFAULT_FETCH_TIMEOUT = 1.0


@dataclass
class SyncProgress:
	"""Snapshot passed to progress callbacks."""
	phase: SyncPhase
	framework: Optional[str]
	framework_index: int
	frameworks_total: int
	file_index: int
	files_total: int
	elapsed: float
	overall_progress: float

	@property
	def estimated_time_remaining(self) -> Optional[float]:
		if self.overall_progress <= 0.01:
			return None
		return self.elapsed / self.overall_progress - self.elapsed


@dataclass
class SyncStats:
	"""Statistics from a sync run."""
	indexed: int = 0
	skipped: int = 0
	failed: list[tuple[str, str]] = field(default_factory=list)
	phases_completed: list[str] = field(default_factory=list)
	resumed: bool = False
	duration_seconds: float = 0.0


class RemoteIndexer:
	"""
	Streams a remote documentation tree into the search indexes.

	Usage:
		async with GitHubFetcher(config.repository) as fetcher:
			indexer = RemoteIndexer(fetcher, index, config.sync_state_path, samples=samples)
			stats = await indexer.run()
	"""

	def __init__(
		self,
		fetcher: ContentFetcher,
		index: SearchIndex,
		state_path: Path,
		samples: Optional[SampleIndex] = None,
		phases: Optional[Iterable[SyncPhase]] = None,
		concurrency: int = DEFAULT_CONCURRENCY,
		fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
		retry: Optional[RetryPolicy] = None,
		on_progress: Optional[Callable[[SyncProgress], None]] = None,
		cancel_event: Optional[asyncio.Event] = None,
	):
		"""
		Initialize the indexer.

		Args:
			fetcher: Source of listings and file bodies
			index: Document index receiving docs phases
			state_path: Checkpoint file location
			samples: Sample index receiving the samples phase (skipped when None)
			phases: Phases to run, in order (default: all)
			concurrency: Maximum in-flight fetches
			fetch_timeout: Seconds allowed for a single fetch attempt
			retry: Backoff policy for transient fetch failures
			on_progress: Called after every file
			cancel_event: Set to stop between files
		"""
		self.fetcher = fetcher
		self.index = index
		self.samples = samples
		self.state_path = Path(state_path)
		self.phases = list(phases) if phases is not None else list(SyncPhase)
		self.concurrency = max(1, concurrency)
		self.fetch_timeout = fetch_timeout
		self.retry = retry or RetryPolicy()
		self.on_progress = on_progress
		self.cancel_event = cancel_event or asyncio.Event()

		self.state = SyncState()
		self._started = time.monotonic()

	def cancel(self) -> None:
		"""Ask the running sync to stop after the current file."""
		self.cancel_event.set()

	# ------------------------------------------------------------------
	# State
	# ------------------------------------------------------------------

	def load_state(self, fresh: bool = False) -> bool:
		"""
		Pick up an existing checkpoint.

		A checkpoint from another schema version, or one that cannot be read,
		is discarded and the sync starts over.

		Returns:
			True if a checkpoint is being resumed
		"""
		if fresh:
			SyncState.delete(self.state_path)
			self.state = SyncState()
			return False

		if not SyncState.exists(self.state_path):
			self.state = SyncState()
			return False

		try:
			self.state = SyncState.load(self.state_path)
		except SyncStateVersionError as e:
			logger.warning(f"Discarding incompatible sync state: {e}")
		except SyncStateError as e:
			logger.warning(f"Discarding unreadable sync state: {e}")
		else:
			logger.info(f"Resuming sync at {self.state.progress_description}")
			return True

		SyncState.delete(self.state_path)
		self.state = SyncState()
		return False

	def _save(self) -> None:
		self.state.save(self.state_path)

	def _report(self) -> None:
		if self.on_progress is None:
			return
		state = self.state
		self.on_progress(SyncProgress(
			phase=state.phase,
			framework=state.current_framework,
			framework_index=len(state.frameworks_completed) + (1 if state.current_framework else 0),
			frameworks_total=state.frameworks_total,
			file_index=state.current_file_index,
			files_total=state.files_total,
			elapsed=time.monotonic() - self._started,
			overall_progress=state.overall_progress(len(self.phases)),
		))

	def _check_cancelled(self) -> None:
		if self.cancel_event.is_set():
			self._save()
			logger.info(f"Sync cancelled at {self.state.progress_description}")
			raise SyncCancelledError(f"Sync cancelled at {self.state.progress_description}")

	# ------------------------------------------------------------------
	# Run
	# ------------------------------------------------------------------

	async def run(self, fresh: bool = False) -> SyncStats:
		"""
		Run every configured phase, resuming from the checkpoint if present.

		Raises:
			SyncCancelledError: cancel() was called; the checkpoint is on disk.
			SyncStateError: The checkpoint could not be written.
			StorageError: An index write failed.
			FetchError: A listing could not be fetched.
		"""
		self._started = time.monotonic()
		stats = SyncStats(resumed=self.load_state(fresh))

		try:
			for phase in self.phases:
				if phase in self.state.phases_completed:
					continue

				spec = PHASES[phase]
				if spec.is_samples and self.samples is None:
					logger.info("No sample index configured, skipping samples phase")
					self.state = self.state.starting_phase(spec.phase, 0)
				else:
					await self._run_phase(spec, stats)

				self.state = self.state.completing_phase()
				self._save()
				stats.phases_completed.append(phase.value)
				logger.info(f"Phase complete: {phase.value}")

			SyncState.delete(self.state_path)
		finally:
			stats.duration_seconds = time.monotonic() - self._started

		logger.info(
			f"Sync complete: {stats.indexed} indexed, {len(stats.failed)} failed "
			f"in {stats.duration_seconds:.1f}s"
		)
		return stats

	async def _run_phase(self, spec: PhaseSpec, stats: SyncStats) -> None:
		items = await self._list_items(spec)

		if self.state.phase is spec.phase:
			# Resuming: keep completed frameworks and the current file position
			self.state = self.state.model_copy(update={"frameworks_total": len(items)})
		else:
			self.state = self.state.starting_phase(spec.phase, len(items))
		self._save()
		logger.info(f"Phase {spec.phase.value}: {len(items)} item(s)")

		for item in items:
			if item in self.state.frameworks_completed:
				continue
			self._check_cancelled()

			await self._run_item(spec, item, stats)

			self.state = self.state.completing_framework()
			self._save()

	async def _list_items(self, spec: PhaseSpec) -> list[str]:
		if not spec.nested:
			return [spec.directory]
		try:
			return await self.fetcher.list_directories(spec.directory)
		except FetchError as e:
			if e.status == FetchStatus.NOT_FOUND.value:
				logger.warning(f"No remote content for phase {spec.phase.value}: {e}")
				return []
			raise

	async def _list_files(self, spec: PhaseSpec, path: str) -> list[RemoteFile]:
		if not spec.is_samples:
			return [f for f in await self.fetcher.list_files(path) if is_doc_file(f.name)]

		# Sample projects keep sources in nested folders
		files = list(await self.fetcher.list_files(path))
		for directory in await self.fetcher.list_directories(path):
			files.extend(await self._list_files(spec, f"{path}/{directory}"))
		return sorted(files, key=lambda f: f.path)

	async def _run_item(self, spec: PhaseSpec, item: str, stats: SyncStats) -> None:
		path = f"{spec.directory}/{item}" if spec.nested else spec.directory
		files = await self._list_files(spec, path)

		start = 0
		if self.state.current_framework == item:
			start = min(self.state.current_file_index, len(files))

		self.state = self.state.starting_framework(item, len(files))
		if start:
			self.state = self.state.updating_file_index(start)
			logger.info(f"Resuming {item} at file {start}/{len(files)}")
		self._save()
		self._report()

		if spec.is_samples:
			await self._index_sample_project(item, path, files)

		semaphore = asyncio.Semaphore(self.concurrency)
		pending = files[start:]
		tasks = [asyncio.create_task(self._fetch(semaphore, f.path)) for f in pending]

		try:
			for offset, (file, task) in enumerate(zip(pending, tasks)):
				self._check_cancelled()
				result = await task
				await self._index_result(spec, item, path, file, result, stats)

				self.state = self.state.updating_file_index(start + offset + 1)
				self._save()
				self._report()
		finally:
			for task in tasks:
				if not task.done():
					task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)

		if spec.is_samples:
			await self.samples.refresh_frameworks(item)

	# ------------------------------------------------------------------
	# Per-file work
	# ------------------------------------------------------------------

	async def _fetch_once(self, path: str) -> FetchResult:
		try:
			return await asyncio.wait_for(self.fetcher.fetch(path), self.fetch_timeout)
		except asyncio.TimeoutError:
			return FetchResult(FetchStatus.TIMEOUT)
		except Exception as e:
			logger.error(f"Fetch error for {path}: {e}")
			return FetchResult(FetchStatus.ERROR)

	async def _fetch(self, semaphore: asyncio.Semaphore, path: str) -> FetchResult:
		async with semaphore:
			return await self.retry.run(lambda: self._fetch_once(path))

	async def _index_result(
		self,
		spec: PhaseSpec,
		item: str,
		item_path: str,
		file: RemoteFile,
		result: FetchResult,
		stats: SyncStats,
	) -> None:
		if not result.ok:
			logger.warning(f"Failed to fetch {file.path}: {result.status.value} after {result.attempts} attempt(s)")
			stats.failed.append((file.path, result.status.value))
			return

		content = result.content or ""
		try:
			if spec.is_samples:
				sample_file = to_sample_file(item, item_path, file, content)
				if sample_file is None:
					stats.skipped += 1
					return
				await self.samples.index_file(sample_file)
			else:
				await self.index.index_document(to_document(spec, item, file, content))
		except InvalidDocumentError as e:
			logger.warning(str(e))
			stats.failed.append((file.path, e.reason))
			return

		stats.indexed += 1

	async def _index_sample_project(self, item: str, path: str, files: list[RemoteFile]) -> None:
		readme = None
		for file in files:
			if file.path == f"{path}/README.md":
				result = await self.retry.run(lambda: self._fetch_once(file.path))
				if result.ok:
					readme = result.content
				break

		title = (first_heading(readme) if readme else None) or title_from_filename(item)
		description = ""
		if readme:
			for line in readme.splitlines():
				line = line.strip()
				if line and not line.startswith("#"):
					description = line
					break

		await self.samples.index_project(SampleProject(
			id=item,
			title=title,
			description=description,
			readme=readme,
		))
