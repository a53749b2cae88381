"""
Search Index - SQLite FTS5 document store with version-aware ranking.

Features:
- Upsert by URI; full-text row and metadata row committed together
- bm25 candidates re-ranked by kind, source and title heuristics
- Numeric per-platform minimum-version filtering (fail-closed)
- Single writer connection behind a lock, separate WAL reader connection
"""

import asyncio
import hashlib
import json
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite

from ..errors import InvalidDocumentError, InvalidQueryError, SchemaVersionError, StorageError
from ..models import (
	BatchResult,
	Document,
	DocumentFormat,
	Platform,
	PlatformAvailability,
	SearchFilters,
	SearchResult,
	Source,
	framework_identifier,
)
from . import ranking
from .availability import extract_availability, version_at_most

logger = logging.getLogger(__name__)

# Bump when the table layout changes; old databases must be rebuilt
SCHEMA_VERSION = 1

DEFAULT_SUMMARY_LENGTH = 1500
DEFAULT_LIMIT = 10
MAX_LIMIT = 50

# Candidates fetched per requested result before re-ranking
OVERFETCH_FACTOR = 20
OVERFETCH_MAX = 1000

_SCHEMA = """
CREATE TABLE IF NOT EXISTS docs_metadata (
	id INTEGER PRIMARY KEY AUTOINCREMENT,
	uri TEXT NOT NULL UNIQUE,
	source TEXT NOT NULL,
	framework TEXT NOT NULL DEFAULT '',
	language TEXT,
	title TEXT NOT NULL,
	file_path TEXT NOT NULL DEFAULT '',
	content_hash TEXT NOT NULL,
	last_indexed TEXT NOT NULL,
	source_type TEXT NOT NULL DEFAULT 'apple',
	word_count INTEGER NOT NULL DEFAULT 0,
	kind TEXT NOT NULL DEFAULT 'unknown',
	summary_truncated INTEGER NOT NULL DEFAULT 0,
	json_data TEXT,
	min_ios TEXT,
	min_macos TEXT,
	min_tvos TEXT,
	min_watchos TEXT,
	min_visionos TEXT
);

CREATE INDEX IF NOT EXISTS idx_docs_source ON docs_metadata(source);
CREATE INDEX IF NOT EXISTS idx_docs_framework ON docs_metadata(framework);
CREATE INDEX IF NOT EXISTS idx_docs_min_ios ON docs_metadata(min_ios);
CREATE INDEX IF NOT EXISTS idx_docs_min_macos ON docs_metadata(min_macos);
CREATE INDEX IF NOT EXISTS idx_docs_min_tvos ON docs_metadata(min_tvos);
CREATE INDEX IF NOT EXISTS idx_docs_min_watchos ON docs_metadata(min_watchos);
CREATE INDEX IF NOT EXISTS idx_docs_min_visionos ON docs_metadata(min_visionos);

CREATE VIRTUAL TABLE IF NOT EXISTS docs_fts USING fts5(
	uri UNINDEXED,
	source UNINDEXED,
	framework UNINDEXED,
	language UNINDEXED,
	title,
	content,
	summary,
	tokenize='porter unicode61'
);

CREATE TABLE IF NOT EXISTS framework_aliases (
	identifier TEXT PRIMARY KEY,
	import_name TEXT NOT NULL,
	display_name TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_aliases_import ON framework_aliases(import_name);
CREATE INDEX IF NOT EXISTS idx_aliases_display ON framework_aliases(display_name);
"""

_OBJC_MARKERS = (
	"#import",
	"@interface",
	"@implementation",
	"@property",
	"@synthesize",
	"@selector",
	"NSObject",
	"- (void)",
	"- (id)",
	"+ (void)",
	"+ (id)",
	"[[",
	"]]",
)


def extract_summary(content: str, max_length: int = DEFAULT_SUMMARY_LENGTH) -> tuple[str, bool]:
	"""
	Build a plain summary from markdown content.

	Front matter and leading headings are dropped, the rest is cut to
	`max_length` characters at the last sentence end (when past the first
	100 characters) or else the last word.

	Returns:
		(summary, truncated)
	"""
	cleaned = content.strip()

	if cleaned.startswith("---"):
		end = cleaned.find("---", 3)
		if end != -1:
			cleaned = cleaned[end + 3:].strip()

	while cleaned.startswith("#"):
		newline = cleaned.find("\n")
		if newline == -1:
			break
		cleaned = cleaned[newline + 1:].strip()

	truncated = len(cleaned) > max_length
	head = cleaned[:max_length]

	period = head.rfind(".")
	if period > 100:
		return head[:period + 1], truncated

	if len(head) == max_length:
		space = head.rfind(" ")
		if space != -1:
			return head[:space] + "...", truncated

	return head, truncated


def detect_language(content: str) -> str:
	"""Guess "objc" or "swift" from Objective-C syntax markers."""
	for marker in _OBJC_MARKERS:
		if marker in content:
			return "objc"
	return "swift"


def count_words(content: str) -> int:
	return len([w for w in content.split(" ") if w])


def module_name(json_data: Optional[str]) -> Optional[str]:
	"""Display name of the page's module ("App Intents"), if its JSON carries one."""
	if not json_data:
		return None
	try:
		payload = json.loads(json_data)
	except json.JSONDecodeError:
		return None
	module = payload.get("module") if isinstance(payload, dict) else None
	if not isinstance(module, str) or not module.strip():
		return None
	return module.strip()


class SearchIndex:
	"""
	Full-text document index backed by SQLite FTS5.

	Usage:
		index = SearchIndex(config.search_db_path)
		await index.init()

		await index.index_document(Document(uri=..., source="apple-docs", title=..., content=...))
		results = await index.search("view", SearchFilters(min_ios="15.0"))

		await index.close()
	"""

	def __init__(
		self,
		db_path: Path | str,
		summary_max_length: int = DEFAULT_SUMMARY_LENGTH,
		default_limit: int = DEFAULT_LIMIT,
		max_limit: int = MAX_LIMIT,
	):
		self.db_path = Path(db_path)
		self.summary_max_length = summary_max_length
		self.default_limit = default_limit
		self.max_limit = max_limit
		self._db: Optional[aiosqlite.Connection] = None
		self._reader: Optional[aiosqlite.Connection] = None
		self._write_lock = asyncio.Lock()

	async def __aenter__(self) -> "SearchIndex":
		await self.init()
		return self

	async def __aexit__(self, *exc) -> None:
		await self.close()

	async def init(self) -> None:
		"""Open both connections, create tables and check the schema version."""
		if self._db is not None:
			return

		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		try:
			db = await aiosqlite.connect(str(self.db_path))
			db.row_factory = aiosqlite.Row
			await db.execute("PRAGMA journal_mode=WAL")

			cursor = await db.execute("PRAGMA user_version")
			row = await cursor.fetchone()
			found = row[0] if row else 0
			if found not in (0, SCHEMA_VERSION):
				await db.close()
				raise SchemaVersionError(found, SCHEMA_VERSION, str(self.db_path))

			await db.executescript(_SCHEMA)
			await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
			await db.commit()

			reader = await aiosqlite.connect(str(self.db_path))
			reader.row_factory = aiosqlite.Row
			await reader.execute("PRAGMA query_only = ON")
			await reader.create_function("version_at_most", 2, version_at_most, deterministic=True)
		except sqlite3.Error as e:
			logger.error(f"Failed to open search index {self.db_path}: {e}")
			raise StorageError(f"Cannot open search index {self.db_path}: {e}") from e

		self._db = db
		self._reader = reader
		logger.info(f"Search index initialized: {self.db_path}")

	async def close(self) -> None:
		"""Close both connections. Safe to call more than once."""
		if self._reader:
			await self._reader.close()
			self._reader = None
		if self._db:
			await self._db.close()
			self._db = None

	async def _read(self) -> aiosqlite.Connection:
		if self._reader is None:
			await self.init()
		return self._reader

	# ------------------------------------------------------------------
	# Writes
	# ------------------------------------------------------------------

	def _prepare(self, document: Document) -> Document:
		"""Validate a record and fill in every derived field."""
		if not document.uri or not document.uri.strip():
			raise InvalidDocumentError(document.uri, "uri is empty")
		if not document.title or not document.title.strip():
			raise InvalidDocumentError(document.uri, "title is empty")
		if document.source not in Source.values():
			raise InvalidDocumentError(document.uri, f"unknown source '{document.source}'")

		content = document.content or ""
		summary, truncated = extract_summary(content, self.summary_max_length)

		fields = {
			"content": content,
			"summary": summary,
			"summary_truncated": truncated,
			"word_count": count_words(content),
			"framework": framework_identifier(document.framework or "") or None,
			"language": document.language or detect_language(content),
			"content_hash": document.content_hash or hashlib.sha256(content.encode("utf-8")).hexdigest(),
			"last_indexed": document.last_indexed or datetime.now().isoformat(),
			"kind": document.kind or "unknown",
		}

		if document.json_data and not document.has_availability():
			for platform, version in extract_availability(document.json_data).items():
				fields[platform.column] = version

		return replace(document, **fields)

	async def index_document(self, document: Document) -> Document:
		"""
		Insert or fully replace the document stored under `document.uri`.

		Returns:
			The stored document with derived fields filled in.

		Raises:
			InvalidDocumentError: The record is malformed.
			StorageError: The write failed; nothing was committed.
		"""
		doc = self._prepare(document)

		if self._db is None:
			await self.init()

		meta_values = (
			doc.uri, doc.source, doc.framework or "", doc.language, doc.title,
			doc.file_path, doc.content_hash, doc.last_indexed, doc.source_type,
			doc.word_count, doc.kind, int(doc.summary_truncated), doc.json_data,
			doc.min_ios, doc.min_macos, doc.min_tvos, doc.min_watchos, doc.min_visionos,
		)

		async with self._write_lock:
			try:
				cursor = await self._db.execute(
					"SELECT id FROM docs_metadata WHERE uri = ?", (doc.uri,)
				)
				row = await cursor.fetchone()

				if row:
					doc_id = row["id"]
					await self._db.execute("DELETE FROM docs_fts WHERE rowid = ?", (doc_id,))
					await self._db.execute(
						"""
						UPDATE docs_metadata SET
							uri = ?, source = ?, framework = ?, language = ?, title = ?,
							file_path = ?, content_hash = ?, last_indexed = ?, source_type = ?,
							word_count = ?, kind = ?, summary_truncated = ?, json_data = ?,
							min_ios = ?, min_macos = ?, min_tvos = ?, min_watchos = ?, min_visionos = ?
						WHERE id = ?
						""",
						meta_values + (doc_id,),
					)
				else:
					cursor = await self._db.execute(
						"""
						INSERT INTO docs_metadata (
							uri, source, framework, language, title,
							file_path, content_hash, last_indexed, source_type,
							word_count, kind, summary_truncated, json_data,
							min_ios, min_macos, min_tvos, min_watchos, min_visionos
						) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
						""",
						meta_values,
					)
					doc_id = cursor.lastrowid

				await self._db.execute(
					"""
					INSERT INTO docs_fts (rowid, uri, source, framework, language, title, content, summary)
					VALUES (?, ?, ?, ?, ?, ?, ?, ?)
					""",
					(doc_id, doc.uri, doc.source, doc.framework or "", doc.language,
					 doc.title, doc.content, doc.summary),
				)

				display = module_name(doc.json_data) if doc.framework else None
				if display:
					await self._db.execute(
						"""
						INSERT INTO framework_aliases (identifier, import_name, display_name)
						VALUES (?, ?, ?)
						ON CONFLICT(identifier) DO UPDATE SET
							import_name = excluded.import_name,
							display_name = excluded.display_name
						""",
						(doc.framework, display.replace(" ", ""), display),
					)
				await self._db.commit()
			except sqlite3.Error as e:
				await self._db.rollback()
				logger.error(f"Failed to index {doc.uri}: {e}")
				raise StorageError(f"Failed to index {doc.uri}: {e}") from e

		return doc

	async def index_documents(self, documents: Iterable[Document]) -> BatchResult:
		"""Index a batch; malformed records are skipped and reported."""
		result = BatchResult()
		for document in documents:
			try:
				await self.index_document(document)
				result.indexed += 1
			except InvalidDocumentError as e:
				logger.warning(str(e))
				result.rejected.append((e.uri, e.reason))
		return result

	async def clear(self) -> None:
		"""Delete every document. Used for explicit rebuilds."""
		if self._db is None:
			await self.init()
		async with self._write_lock:
			try:
				await self._db.execute("DELETE FROM docs_fts")
				await self._db.execute("DELETE FROM docs_metadata")
				await self._db.execute("DELETE FROM framework_aliases")
				await self._db.commit()
			except sqlite3.Error as e:
				await self._db.rollback()
				raise StorageError(f"Failed to clear index: {e}") from e
		logger.info(f"Cleared search index: {self.db_path}")

	# ------------------------------------------------------------------
	# Reads
	# ------------------------------------------------------------------

	def clamp_limit(self, limit: Optional[int]) -> int:
		if limit is None:
			return self.default_limit
		return max(1, min(int(limit), self.max_limit))

	async def resolve_framework(self, name: str) -> str:
		"""
		Stored framework identifier for a user-supplied framework name.

		"App Intents" (display name), "AppIntents" (import name) and
		"appintents" (identifier) all resolve to "appintents". Names with no
		recorded alias fall back to their identifier form.
		"""
		identifier = framework_identifier(name)
		reader = await self._read()
		try:
			cursor = await reader.execute(
				"""
				SELECT identifier FROM framework_aliases
				WHERE identifier = ? OR import_name = ? OR LOWER(display_name) = ?
				ORDER BY identifier = ? DESC
				LIMIT 1
				""",
				(identifier, name.strip(), name.strip().lower(), identifier),
			)
			row = await cursor.fetchone()
		except sqlite3.Error as e:
			raise StorageError(f"Failed to resolve framework {name!r}: {e}") from e
		return row["identifier"] if row else identifier

	async def search(self, query: str, filters: Optional[SearchFilters] = None) -> list[SearchResult]:
		"""
		Full-text search with filtering and heuristic re-ranking.

		Args:
			query: Search text; may start with a source name such as "swift-evolution"
			filters: Source/framework/language/version constraints and limit

		Returns:
			Results ordered by adjusted rank, ties broken by URI
		"""
		if not query or not query.strip():
			raise InvalidQueryError("Query cannot be empty")

		filters = filters or SearchFilters(limit=self.default_limit)
		limit = self.clamp_limit(filters.limit)

		source = filters.source or None
		text = query
		if source is None:
			source, remaining = ranking.extract_source_prefix(query)
			text = remaining or query

		fts_query = ranking.sanitize_fts_query(text)
		if not fts_query:
			raise InvalidQueryError(f"Query has no searchable terms: {query!r}")

		sql = """
			SELECT
				m.uri, m.source, m.framework, m.title, f.summary, m.file_path,
				m.word_count, m.kind, m.min_ios, m.min_macos, m.min_tvos,
				m.min_watchos, m.min_visionos,
				bm25(docs_fts) AS rank
			FROM docs_fts f
			JOIN docs_metadata m ON m.id = f.rowid
			WHERE docs_fts MATCH ?
		"""
		params: list = [fts_query]

		if source:
			sql += " AND m.source = ?"
			params.append(source)
		elif not filters.include_archive:
			sql += " AND m.source != ?"
			params.append(Source.APPLE_ARCHIVE.value)

		framework_filter = await self.resolve_framework(filters.framework) if filters.framework else None
		if framework_filter:
			sql += " AND m.framework = ?"
			params.append(framework_filter)
		if filters.language:
			sql += " AND m.language = ?"
			params.append(filters.language.lower())

		# Numeric comparison, applied before the candidate LIMIT
		for platform, target in filters.version_filters().items():
			sql += f" AND version_at_most(m.{platform.column}, ?)"
			params.append(target)

		sql += " ORDER BY rank LIMIT ?"
		params.append(min(limit * OVERFETCH_FACTOR, OVERFETCH_MAX))

		reader = await self._read()
		try:
			cursor = await reader.execute(sql, params)
			rows = await cursor.fetchall()
		except sqlite3.Error as e:
			logger.error(f"Search failed for {query!r}: {e}")
			raise StorageError(f"Search failed: {e}") from e

		results = []
		for row in rows:
			availability = {p: row[p.column] for p in Platform}
			kind = ranking.infer_kind(row["uri"], row["title"], row["word_count"], row["kind"])
			rank = ranking.adjusted_rank(
				row["rank"],
				query=text,
				uri=row["uri"],
				source=row["source"],
				title=row["title"],
				kind=kind,
				framework=framework_filter,
			)
			results.append(SearchResult(
				uri=row["uri"],
				source=row["source"],
				framework=row["framework"],
				title=row["title"],
				summary=row["summary"],
				rank=rank,
				word_count=row["word_count"],
				file_path=row["file_path"],
				kind=kind,
				availability=[
					PlatformAvailability(platform, version)
					for platform, version in availability.items()
					if version
				],
			))

		results.sort(key=lambda r: (r.rank, r.uri))
		return results[:limit]

	async def get_document(self, uri: str, ignore_case: bool = False) -> Optional[Document]:
		"""Stored document for `uri`; `ignore_case` matches URIs whose host was case-folded by a URL parser."""
		collate = " COLLATE NOCASE" if ignore_case else ""
		reader = await self._read()
		try:
			cursor = await reader.execute(
				f"""
				SELECT m.*, f.content, f.summary
				FROM docs_metadata m
				JOIN docs_fts f ON f.rowid = m.id
				WHERE m.uri = ?{collate}
				ORDER BY m.uri = ? DESC
				LIMIT 1
				""",
				(uri, uri),
			)
			row = await cursor.fetchone()
		except sqlite3.Error as e:
			raise StorageError(f"Failed to read {uri}: {e}") from e
		return Document.from_row(row) if row else None

	async def get_document_content(
		self,
		uri: str,
		format: DocumentFormat | str = DocumentFormat.JSON,
	) -> Optional[str]:
		"""
		Full content of one document, or None if the URI is not indexed.

		JSON returns the stored structured payload when there is one and a
		small synthesized object otherwise; markdown returns the raw content.
		"""
		format = DocumentFormat(format)
		doc = await self.get_document(uri)
		if doc is None:
			return None

		if format is DocumentFormat.MARKDOWN:
			return doc.content

		if doc.json_data:
			return doc.json_data
		return json.dumps({
			"uri": doc.uri,
			"title": doc.title,
			"source": doc.source,
			"framework": doc.framework or "",
			"rawMarkdown": doc.content,
		})

	async def list_frameworks(self) -> dict[str, int]:
		"""Framework -> document count, frameworks sorted by name."""
		reader = await self._read()
		try:
			cursor = await reader.execute(
				"""
				SELECT framework, COUNT(*) AS count
				FROM docs_metadata
				WHERE framework != ''
				GROUP BY framework
				ORDER BY framework
				"""
			)
			rows = await cursor.fetchall()
		except sqlite3.Error as e:
			raise StorageError(f"Failed to list frameworks: {e}") from e
		return {row["framework"]: row["count"] for row in rows}

	async def document_count(self, source: Optional[str] = None) -> int:
		reader = await self._read()
		sql = "SELECT COUNT(*) FROM docs_metadata"
		params: tuple = ()
		if source:
			sql += " WHERE source = ?"
			params = (source,)
		try:
			cursor = await reader.execute(sql, params)
			row = await cursor.fetchone()
		except sqlite3.Error as e:
			raise StorageError(f"Failed to count documents: {e}") from e
		return row[0]

	async def list_documents(self, offset: int = 0, limit: int = 100) -> list[dict]:
		"""URI, title, source and framework of documents, ordered by URI."""
		reader = await self._read()
		try:
			cursor = await reader.execute(
				"""
				SELECT uri, title, source, framework
				FROM docs_metadata
				ORDER BY uri
				LIMIT ? OFFSET ?
				""",
				(limit, offset),
			)
			rows = await cursor.fetchall()
		except sqlite3.Error as e:
			raise StorageError(f"Failed to list documents: {e}") from e
		return [dict(row) for row in rows]
