"""Shared test fixtures and helpers for cupertino tests."""

import asyncio
import json
from typing import Optional

from cupertino.models import Document
from cupertino.sync.fetcher import FetchResult, FetchStatus, RemoteFile


def make_document(
	uri: str = "apple-docs://swiftui/view",
	title: str = "View",
	content: str = "A type that represents part of your app's user interface.",
	source: str = "apple-docs",
	framework: Optional[str] = "swiftui",
	**kwargs,
) -> Document:
	"""Create a Document with realistic defaults for testing."""
	return Document(uri=uri, source=source, title=title, content=content, framework=framework, **kwargs)


def doc_page(title: str, abstract: str = "", kind: str = "struct", availability: Optional[list] = None) -> str:
	"""A structured documentation page as served by the remote tree."""
	return json.dumps({
		"title": title,
		"kind": kind,
		"abstract": abstract or f"Documentation for {title}.",
		"availability": availability or [{"name": "iOS", "introducedAt": "13.0"}],
	})


class FakeFetcher:
	"""
	In-memory ContentFetcher.

	`tree` maps a file path to its content; directories are implied by the
	paths. `failures` maps a path to the statuses returned, in order,
	before the real content.
	"""

	def __init__(
		self,
		tree: dict[str, str],
		failures: Optional[dict[str, list[FetchStatus]]] = None,
		delays: Optional[dict[str, float]] = None,
	):
		self.tree = dict(tree)
		self.failures = {path: list(statuses) for path, statuses in (failures or {}).items()}
		self.delays = delays or {}
		self.fetched: list[str] = []

	def _children(self, path: str) -> list[str]:
		prefix = path.rstrip("/") + "/"
		return [p[len(prefix):] for p in self.tree if p.startswith(prefix)]

	async def list_directories(self, path: str) -> list[str]:
		return sorted({child.split("/")[0] for child in self._children(path) if "/" in child})

	async def list_files(self, path: str) -> list[RemoteFile]:
		prefix = path.rstrip("/") + "/"
		return sorted(
			(
				RemoteFile(name=child, path=prefix + child, size=len(self.tree[prefix + child]))
				for child in self._children(path)
				if "/" not in child
			),
			key=lambda f: f.name,
		)

	async def fetch(self, path: str) -> FetchResult:
		self.fetched.append(path)
		if path in self.delays:
			await asyncio.sleep(self.delays[path])
		pending = self.failures.get(path)
		if pending:
			return FetchResult(pending.pop(0))
		if path not in self.tree:
			return FetchResult(FetchStatus.NOT_FOUND, http_status=404)
		return FetchResult(FetchStatus.OK, self.tree[path], http_status=200)
