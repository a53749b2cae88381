"""Tests for resumable remote indexing."""

import json
from pathlib import Path

import pytest

from cupertino.errors import SyncCancelledError
from cupertino.models import SearchFilters
from cupertino.search.index import SearchIndex
from cupertino.search.samples import SampleIndex
from cupertino.sync.fetcher import FetchStatus, RetryPolicy
from cupertino.sync.indexer import RemoteIndexer
from cupertino.sync.state import SyncPhase, SyncState

from .helpers import FakeFetcher, doc_page

NO_WAIT = RetryPolicy(attempts=3, base_delay=0)


def docs_tree() -> dict[str, str]:
	return {
		"docs/swiftui/text.json": doc_page("Text", "A view that displays read-only text."),
		"docs/swiftui/view.json": doc_page("View", "A type that represents your user interface.", kind="protocol"),
		"docs/uikit/uiview.json": doc_page("UIView", "An object that manages content for a rectangular area."),
		"docs/uikit/notes.txt": "not a documentation page",
		"swift-evolution/0296-async-await.md": "# Async/await\n\nAsynchronous functions for Swift.",
	}


@pytest.fixture
async def index(tmp_path: Path):
	store = SearchIndex(tmp_path / "search.db")
	await store.init()
	yield store
	await store.close()


@pytest.fixture
async def samples(tmp_path: Path):
	store = SampleIndex(tmp_path / "samples.db")
	await store.init()
	yield store
	await store.close()


async def _uris(index: SearchIndex) -> list[str]:
	return [row["uri"] for row in await index.list_documents(limit=1000)]


class TestFullSync:
	"""A complete run over a healthy tree."""

	@pytest.mark.asyncio
	async def test_indexes_all_phases(self, index, tmp_path: Path):
		state_path = tmp_path / "sync-state.json"
		indexer = RemoteIndexer(FakeFetcher(docs_tree()), index, state_path, retry=NO_WAIT)

		stats = await indexer.run()

		assert stats.indexed == 4
		assert stats.failed == []
		assert stats.resumed is False
		assert await _uris(index) == [
			"apple-docs://swiftui/text",
			"apple-docs://swiftui/view",
			"apple-docs://uikit/uiview",
			"swift-evolution://0296-async-await",
		]
		# Samples phase is skipped without a sample index but still counted as done
		assert stats.phases_completed == [p.value for p in SyncPhase]
		assert not SyncState.exists(state_path)

	@pytest.mark.asyncio
	async def test_structured_pages_carry_availability(self, index, tmp_path: Path):
		indexer = RemoteIndexer(FakeFetcher(docs_tree()), index, tmp_path / "s.json", retry=NO_WAIT)
		await indexer.run()

		view = await index.get_document("apple-docs://swiftui/view")
		assert view.framework == "swiftui"
		assert view.kind == "protocol"
		assert view.min_ios == "13.0"
		assert view.content.startswith("# View")

		results = await index.search("interface", SearchFilters(min_ios="15.0"))
		assert [r.uri for r in results] == ["apple-docs://swiftui/view"]

	@pytest.mark.asyncio
	async def test_selected_phases_only(self, index, tmp_path: Path):
		fetcher = FakeFetcher(docs_tree())
		indexer = RemoteIndexer(fetcher, index, tmp_path / "s.json", phases=[SyncPhase.EVOLUTION], retry=NO_WAIT)
		stats = await indexer.run()

		assert stats.phases_completed == ["evolution"]
		assert await _uris(index) == ["swift-evolution://0296-async-await"]
		assert fetcher.fetched == ["swift-evolution/0296-async-await.md"]

	@pytest.mark.asyncio
	async def test_skipped_samples_phase_does_not_skip_the_next(self, index, tmp_path: Path):
		"""Without a sample index the samples phase is marked done, not the phase after it."""
		indexer = RemoteIndexer(
			FakeFetcher(docs_tree()), index, tmp_path / "s.json",
			phases=[SyncPhase.SAMPLES, SyncPhase.DOCS], retry=NO_WAIT,
		)
		stats = await indexer.run()

		assert stats.indexed == 3
		assert stats.phases_completed == ["samples", "docs"]
		assert indexer.state.phases_completed == [SyncPhase.SAMPLES, SyncPhase.DOCS]

	@pytest.mark.asyncio
	async def test_progress_reported(self, index, tmp_path: Path):
		reports = []
		indexer = RemoteIndexer(
			FakeFetcher(docs_tree()), index, tmp_path / "s.json",
			phases=[SyncPhase.DOCS], retry=NO_WAIT, on_progress=reports.append,
		)
		await indexer.run()

		swiftui = [r for r in reports if r.framework == "swiftui"]
		assert [r.file_index for r in swiftui] == [0, 1, 2]
		assert all(r.files_total == 2 for r in swiftui)
		assert reports[-1].framework == "uikit"
		assert reports[-1].overall_progress == pytest.approx(1.0)


class TestFailures:
	"""Retries, missing files and timeouts."""

	@pytest.mark.asyncio
	async def test_transient_failures_retried(self, index, tmp_path: Path):
		path = "docs/swiftui/view.json"
		fetcher = FakeFetcher(docs_tree(), failures={path: [FetchStatus.SERVER_ERROR, FetchStatus.RATE_LIMITED]})
		indexer = RemoteIndexer(fetcher, index, tmp_path / "s.json", phases=[SyncPhase.DOCS], retry=NO_WAIT)

		stats = await indexer.run()

		assert fetcher.fetched.count(path) == 3
		assert stats.failed == []
		assert await index.get_document("apple-docs://swiftui/view") is not None

	@pytest.mark.asyncio
	async def test_retries_exhausted(self, index, tmp_path: Path):
		path = "docs/swiftui/view.json"
		fetcher = FakeFetcher(docs_tree(), failures={path: [FetchStatus.SERVER_ERROR] * 5})
		indexer = RemoteIndexer(fetcher, index, tmp_path / "s.json", phases=[SyncPhase.DOCS], retry=NO_WAIT)

		stats = await indexer.run()

		assert fetcher.fetched.count(path) == 3
		assert stats.failed == [(path, "server-error")]
		assert stats.indexed == 2

	@pytest.mark.asyncio
	async def test_not_found_recorded_and_skipped(self, index, tmp_path: Path):
		"""A 404 is not retried and does not stop the run."""
		path = "docs/swiftui/text.json"
		fetcher = FakeFetcher(docs_tree(), failures={path: [FetchStatus.NOT_FOUND]})
		indexer = RemoteIndexer(fetcher, index, tmp_path / "s.json", phases=[SyncPhase.DOCS], retry=NO_WAIT)

		stats = await indexer.run()

		assert fetcher.fetched.count(path) == 1
		assert stats.failed == [(path, "not-found")]
		assert await _uris(index) == ["apple-docs://swiftui/view", "apple-docs://uikit/uiview"]

	@pytest.mark.asyncio
	async def test_slow_fetch_times_out(self, index, tmp_path: Path):
		path = "docs/uikit/uiview.json"
		fetcher = FakeFetcher(docs_tree(), delays={path: 0.5})
		indexer = RemoteIndexer(
			fetcher, index, tmp_path / "s.json",
			phases=[SyncPhase.DOCS], fetch_timeout=0.05, retry=RetryPolicy(attempts=2, base_delay=0),
		)

		stats = await indexer.run()

		assert stats.failed == [(path, "timeout")]
		assert fetcher.fetched.count(path) == 2


class TestResume:
	"""Cancellation and checkpoint recovery."""

	@pytest.mark.asyncio
	async def test_cancel_then_resume_matches_clean_run(self, tmp_path: Path):
		async with SearchIndex(tmp_path / "clean.db") as clean:
			await RemoteIndexer(FakeFetcher(docs_tree()), clean, tmp_path / "clean.json", retry=NO_WAIT).run()
			expected = await _uris(clean)

		state_path = tmp_path / "sync-state.json"
		async with SearchIndex(tmp_path / "resumed.db") as resumed:
			indexer = None

			def cancel_after_first_file(progress):
				if progress.framework == "swiftui" and progress.file_index == 1:
					indexer.cancel()

			indexer = RemoteIndexer(
				FakeFetcher(docs_tree()), resumed, state_path,
				retry=NO_WAIT, on_progress=cancel_after_first_file,
			)
			with pytest.raises(SyncCancelledError):
				await indexer.run()

			checkpoint = SyncState.load(state_path)
			assert checkpoint.phase == SyncPhase.DOCS
			assert checkpoint.current_framework == "swiftui"
			assert checkpoint.current_file_index == 1

			fetcher = FakeFetcher(docs_tree())
			stats = await RemoteIndexer(fetcher, resumed, state_path, retry=NO_WAIT).run()

			assert stats.resumed is True
			assert "docs/swiftui/text.json" not in fetcher.fetched
			assert await _uris(resumed) == expected
			assert not SyncState.exists(state_path)

	@pytest.mark.asyncio
	async def test_completed_phases_skipped_on_resume(self, index, tmp_path: Path):
		state_path = tmp_path / "sync-state.json"
		SyncState(phases_completed=[SyncPhase.DOCS]).save(state_path)

		fetcher = FakeFetcher(docs_tree())
		await RemoteIndexer(fetcher, index, state_path, retry=NO_WAIT).run()

		assert not any(path.startswith("docs/") for path in fetcher.fetched)

	@pytest.mark.asyncio
	async def test_incompatible_checkpoint_starts_fresh(self, index, tmp_path: Path):
		state_path = tmp_path / "sync-state.json"
		data = json.loads(SyncState(phases_completed=[SyncPhase.DOCS]).model_dump_json())
		data["schema_version"] = 99
		state_path.write_text(json.dumps(data))

		stats = await RemoteIndexer(FakeFetcher(docs_tree()), index, state_path, retry=NO_WAIT).run()

		assert stats.resumed is False
		assert stats.indexed == 4

	@pytest.mark.asyncio
	async def test_fresh_ignores_checkpoint(self, index, tmp_path: Path):
		state_path = tmp_path / "sync-state.json"
		SyncState(phases_completed=[SyncPhase.DOCS]).save(state_path)

		stats = await RemoteIndexer(FakeFetcher(docs_tree()), index, state_path, retry=NO_WAIT).run(fresh=True)

		assert stats.resumed is False
		assert stats.indexed == 4


class TestSamplesPhase:
	"""Sample code projects go to the sample index."""

	@pytest.mark.asyncio
	async def test_sample_project_indexed(self, index, samples, tmp_path: Path):
		tree = {
			"sample-code/food-truck/README.md": "# Food Truck\n\nA multiplatform SwiftUI app.",
			"sample-code/food-truck/App/App.swift": "import SwiftUI\nimport Charts\n\n@main struct FoodTruckApp: App {}",
			"sample-code/food-truck/Assets/icon.png": "binary",
		}
		indexer = RemoteIndexer(
			FakeFetcher(tree), index, tmp_path / "s.json",
			samples=samples, phases=[SyncPhase.SAMPLES], retry=NO_WAIT,
		)

		stats = await indexer.run()

		assert stats.indexed == 2
		assert stats.skipped == 1
		project = await samples.get_project("food-truck")
		assert project.title == "Food Truck"
		assert project.description == "A multiplatform SwiftUI app."
		assert project.frameworks == ["charts", "swiftui"]
		assert [p.id for p in await samples.list_projects(framework="SwiftUI")] == ["food-truck"]
		assert [f.path for f in await samples.list_files("food-truck")] == ["App/App.swift", "README.md"]
		assert await index.document_count() == 0
