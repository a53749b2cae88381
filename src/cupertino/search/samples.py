"""
Sample Index - searchable store of sample code projects and their files.

Lives in its own SQLite file next to the document index. Projects and
files each have an FTS5 companion table.
"""

import asyncio
import logging
import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite

from ..errors import InvalidDocumentError, InvalidQueryError, SchemaVersionError, StorageError
from ..models import SampleFile, SampleProject, framework_identifier
from .ranking import sanitize_fts_query

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
	pk INTEGER PRIMARY KEY AUTOINCREMENT,
	id TEXT NOT NULL UNIQUE,
	title TEXT NOT NULL,
	description TEXT NOT NULL DEFAULT '',
	frameworks TEXT NOT NULL DEFAULT '',
	readme TEXT,
	web_url TEXT NOT NULL DEFAULT '',
	file_count INTEGER NOT NULL DEFAULT 0,
	total_size INTEGER NOT NULL DEFAULT 0,
	indexed_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_projects_title ON projects(title);

CREATE VIRTUAL TABLE IF NOT EXISTS projects_fts USING fts5(
	id UNINDEXED,
	title,
	description,
	readme,
	frameworks,
	tokenize='porter unicode61'
);

CREATE TABLE IF NOT EXISTS files (
	id INTEGER PRIMARY KEY AUTOINCREMENT,
	project_id TEXT NOT NULL,
	path TEXT NOT NULL,
	filename TEXT NOT NULL,
	folder TEXT NOT NULL,
	extension TEXT NOT NULL,
	content TEXT NOT NULL,
	size INTEGER NOT NULL,
	UNIQUE(project_id, path)
);

CREATE INDEX IF NOT EXISTS idx_files_project ON files(project_id);

CREATE VIRTUAL TABLE IF NOT EXISTS files_fts USING fts5(
	project_id UNINDEXED,
	path UNINDEXED,
	filename,
	content,
	tokenize='unicode61'
);
"""


@dataclass
class FileSearchResult:
	"""A file hit with a highlighted snippet of the matching content."""
	project_id: str
	path: str
	filename: str
	snippet: str
	rank: float


# Swift `import X`, `@testable import X`, `import struct X.Y`; Objective-C `@import X;` and `#import <X/X.h>`
_SWIFT_IMPORT = re.compile(
	r"^[ \t]*(?:@\w+[ \t]+)*import[ \t]+(?:(?:typealias|struct|class|enum|protocol|let|var|func)[ \t]+)?([A-Za-z_]\w*)",
	re.MULTILINE,
)
_OBJC_IMPORT = re.compile(r"^[ \t]*(?:@import[ \t]+([A-Za-z_]\w*)|#import[ \t]+<([A-Za-z_]\w*)/)", re.MULTILINE)

# Source files whose imports name the frameworks a project uses
IMPORT_EXTENSIONS = ("swift", "h", "m", "mm")


def detect_frameworks(sources: Iterable[str]) -> list[str]:
	"""Lowercased, sorted module names imported by the given source texts."""
	found = set()
	for source in sources:
		for match in _SWIFT_IMPORT.finditer(source):
			found.add(match.group(1).lower())
		for match in _OBJC_IMPORT.finditer(source):
			found.add((match.group(1) or match.group(2)).lower())
	return sorted(found)


def _frameworks_column(frameworks: list[str]) -> str:
	# Leading and trailing commas let LIKE match whole names
	if not frameworks:
		return ""
	return "," + ",".join(frameworks) + ","


class SampleIndex:
	"""
	SQLite-backed index of sample code projects.

	Usage:
		samples = SampleIndex(config.samples_db_path)
		await samples.init()

		await samples.index_project(SampleProject(id="foodtruck", title="Food Truck"))
		await samples.index_file(SampleFile("foodtruck", "App/App.swift", source))
		projects = await samples.search_projects("charts", framework="swiftui")
	"""

	def __init__(self, db_path: Path | str):
		self.db_path = Path(db_path)
		self._db: Optional[aiosqlite.Connection] = None
		self._reader: Optional[aiosqlite.Connection] = None
		self._write_lock = asyncio.Lock()

	async def __aenter__(self) -> "SampleIndex":
		await self.init()
		return self

	async def __aexit__(self, *exc) -> None:
		await self.close()

	async def init(self) -> None:
		"""Open connections and create the schema."""
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
		except sqlite3.Error as e:
			logger.error(f"Failed to open sample index {self.db_path}: {e}")
			raise StorageError(f"Cannot open sample index {self.db_path}: {e}") from e

		self._db = db
		self._reader = reader
		logger.info(f"Sample index initialized: {self.db_path}")

	async def close(self) -> None:
		"""Close the database connections."""
		if self._reader:
			await self._reader.close()
			self._reader = None
		if self._db:
			await self._db.close()
			self._db = None

	async def _fetch(self, sql: str, params: tuple | list = ()) -> list[aiosqlite.Row]:
		if self._reader is None:
			await self.init()
		try:
			cursor = await self._reader.execute(sql, params)
			return await cursor.fetchall()
		except sqlite3.Error as e:
			logger.error(f"Sample index query failed: {e}")
			raise StorageError(f"Sample index query failed: {e}") from e

	# ------------------------------------------------------------------
	# Writes
	# ------------------------------------------------------------------

	async def index_project(self, project: SampleProject) -> None:
		"""Insert or replace a project's metadata and searchable text."""
		if not project.id:
			raise InvalidDocumentError("", "sample project id is empty")
		if not project.title:
			raise InvalidDocumentError(project.id, "sample project title is empty")

		if self._db is None:
			await self.init()

		frameworks = _frameworks_column(project.frameworks)
		async with self._write_lock:
			try:
				await self._db.execute(
					"""
					INSERT INTO projects (id, title, description, frameworks, readme, web_url, indexed_at)
					VALUES (?, ?, ?, ?, ?, ?, ?)
					ON CONFLICT(id) DO UPDATE SET
						title = excluded.title,
						description = excluded.description,
						frameworks = excluded.frameworks,
						readme = excluded.readme,
						web_url = excluded.web_url,
						indexed_at = excluded.indexed_at
					""",
					(project.id, project.title, project.description, frameworks,
					 project.readme, project.web_url, project.indexed_at),
				)
				await self._db.execute("DELETE FROM projects_fts WHERE id = ?", (project.id,))
				await self._db.execute(
					"""
					INSERT INTO projects_fts (id, title, description, readme, frameworks)
					VALUES (?, ?, ?, ?, ?)
					""",
					(project.id, project.title, project.description, project.readme or "",
					 " ".join(project.frameworks)),
				)
				await self._db.commit()
			except sqlite3.Error as e:
				await self._db.rollback()
				logger.error(f"Failed to index sample project {project.id}: {e}")
				raise StorageError(f"Failed to index sample project {project.id}: {e}") from e

	async def index_file(self, file: SampleFile) -> None:
		"""
		Insert or replace one source file.

		Raises:
			InvalidDocumentError: The owning project has not been indexed.
		"""
		if self._db is None:
			await self.init()

		key = f"{file.project_id}/{file.path}"
		async with self._write_lock:
			try:
				cursor = await self._db.execute(
					"SELECT 1 FROM projects WHERE id = ?", (file.project_id,)
				)
				if await cursor.fetchone() is None:
					raise InvalidDocumentError(key, f"unknown sample project '{file.project_id}'")

				cursor = await self._db.execute(
					"SELECT id FROM files WHERE project_id = ? AND path = ?",
					(file.project_id, file.path),
				)
				row = await cursor.fetchone()
				values = (file.filename, file.folder, file.extension, file.content, file.size)

				if row:
					file_id = row["id"]
					await self._db.execute("DELETE FROM files_fts WHERE rowid = ?", (file_id,))
					await self._db.execute(
						"""
						UPDATE files SET filename = ?, folder = ?, extension = ?, content = ?, size = ?
						WHERE id = ?
						""",
						values + (file_id,),
					)
				else:
					cursor = await self._db.execute(
						"""
						INSERT INTO files (project_id, path, filename, folder, extension, content, size)
						VALUES (?, ?, ?, ?, ?, ?, ?)
						""",
						(file.project_id, file.path) + values,
					)
					file_id = cursor.lastrowid

				await self._db.execute(
					"INSERT INTO files_fts (rowid, project_id, path, filename, content) VALUES (?, ?, ?, ?, ?)",
					(file_id, file.project_id, file.path, file.filename, file.content),
				)
				await self._db.execute(
					"""
					UPDATE projects SET
						file_count = (SELECT COUNT(*) FROM files WHERE project_id = ?),
						total_size = (SELECT COALESCE(SUM(size), 0) FROM files WHERE project_id = ?)
					WHERE id = ?
					""",
					(file.project_id, file.project_id, file.project_id),
				)
				await self._db.commit()
			except sqlite3.Error as e:
				await self._db.rollback()
				logger.error(f"Failed to index sample file {key}: {e}")
				raise StorageError(f"Failed to index sample file {key}: {e}") from e

	async def refresh_frameworks(self, project_id: str) -> list[str]:
		"""
		Record the frameworks a project imports, read from its stored source files.

		Returns:
			The framework names now on the project (empty if it has no imports)
		"""
		if self._db is None:
			await self.init()

		placeholders = ", ".join("?" for _ in IMPORT_EXTENSIONS)
		async with self._write_lock:
			try:
				cursor = await self._db.execute(
					f"SELECT content FROM files WHERE project_id = ? AND extension IN ({placeholders})",
					(project_id, *IMPORT_EXTENSIONS),
				)
				frameworks = detect_frameworks(row["content"] for row in await cursor.fetchall())

				await self._db.execute(
					"UPDATE projects SET frameworks = ? WHERE id = ?",
					(_frameworks_column(frameworks), project_id),
				)
				await self._db.execute(
					"UPDATE projects_fts SET frameworks = ? WHERE id = ?",
					(" ".join(frameworks), project_id),
				)
				await self._db.commit()
			except sqlite3.Error as e:
				await self._db.rollback()
				logger.error(f"Failed to update frameworks for {project_id}: {e}")
				raise StorageError(f"Failed to update frameworks for {project_id}: {e}") from e

		logger.debug(f"Sample project {project_id} imports: {', '.join(frameworks) or 'nothing'}")
		return frameworks

	async def clear(self) -> None:
		"""Remove every project and file."""
		if self._db is None:
			await self.init()
		async with self._write_lock:
			try:
				for table in ("files_fts", "files", "projects_fts", "projects"):
					await self._db.execute(f"DELETE FROM {table}")
				await self._db.commit()
			except sqlite3.Error as e:
				await self._db.rollback()
				raise StorageError(f"Failed to clear sample index: {e}") from e

	# ------------------------------------------------------------------
	# Reads
	# ------------------------------------------------------------------

	async def search_projects(
		self,
		query: str,
		framework: Optional[str] = None,
		limit: int = 20,
	) -> list[SampleProject]:
		fts_query = sanitize_fts_query(query or "")
		if not fts_query:
			raise InvalidQueryError("Query cannot be empty")

		sql = """
			SELECT p.*
			FROM projects_fts f
			JOIN projects p ON p.id = f.id
			WHERE projects_fts MATCH ?
		"""
		params: list = [fts_query]
		if framework:
			sql += " AND p.frameworks LIKE ?"
			params.append(f"%,{framework_identifier(framework)},%")
		sql += " ORDER BY bm25(projects_fts), p.id LIMIT ?"
		params.append(limit)

		return [SampleProject.from_row(row) for row in await self._fetch(sql, params)]

	async def search_files(
		self,
		query: str,
		project_id: Optional[str] = None,
		limit: int = 20,
	) -> list[FileSearchResult]:
		fts_query = sanitize_fts_query(query or "")
		if not fts_query:
			raise InvalidQueryError("Query cannot be empty")

		sql = """
			SELECT f.project_id, f.path, f.filename,
				snippet(files_fts, 3, '**', '**', '...', 32) AS snippet,
				bm25(files_fts) AS rank
			FROM files_fts
			JOIN files f ON f.id = files_fts.rowid
			WHERE files_fts MATCH ?
		"""
		params: list = [fts_query]
		if project_id:
			sql += " AND f.project_id = ?"
			params.append(project_id)
		sql += " ORDER BY rank, f.project_id, f.path LIMIT ?"
		params.append(limit)

		rows = await self._fetch(sql, params)
		return [
			FileSearchResult(
				project_id=row["project_id"],
				path=row["path"],
				filename=row["filename"],
				snippet=row["snippet"],
				rank=row["rank"],
			)
			for row in rows
		]

	async def get_project(self, project_id: str) -> Optional[SampleProject]:
		rows = await self._fetch("SELECT * FROM projects WHERE id = ?", (project_id,))
		return SampleProject.from_row(rows[0]) if rows else None

	async def list_projects(self, framework: Optional[str] = None, limit: int = 100) -> list[SampleProject]:
		sql = "SELECT * FROM projects"
		params: list = []
		if framework:
			sql += " WHERE frameworks LIKE ?"
			params.append(f"%,{framework_identifier(framework)},%")
		sql += " ORDER BY title, id LIMIT ?"
		params.append(limit)
		return [SampleProject.from_row(row) for row in await self._fetch(sql, params)]

	async def get_file(self, project_id: str, path: str) -> Optional[SampleFile]:
		rows = await self._fetch(
			"SELECT project_id, path, content FROM files WHERE project_id = ? AND path = ?",
			(project_id, path),
		)
		return SampleFile.from_row(rows[0]) if rows else None

	async def list_files(self, project_id: str) -> list[SampleFile]:
		rows = await self._fetch(
			"SELECT project_id, path, content FROM files WHERE project_id = ? ORDER BY path",
			(project_id,),
		)
		return [SampleFile.from_row(row) for row in rows]

	async def project_count(self) -> int:
		rows = await self._fetch("SELECT COUNT(*) FROM projects")
		return rows[0][0]

	async def file_count(self) -> int:
		rows = await self._fetch("SELECT COUNT(*) FROM files")
		return rows[0][0]
