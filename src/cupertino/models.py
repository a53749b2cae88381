"""Record shapes shared by the index, the sync engine and the providers."""

import posixpath
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import aiosqlite


class Source(str, Enum):
	"""Documentation sources known to the index."""
	APPLE_DOCS = "apple-docs"
	APPLE_ARCHIVE = "apple-archive"
	HIG = "hig"
	SWIFT_EVOLUTION = "swift-evolution"
	SWIFT_ORG = "swift-org"
	SWIFT_BOOK = "swift-book"
	PACKAGES = "packages"
	SAMPLES = "samples"

	@classmethod
	def values(cls) -> list[str]:
		return [member.value for member in cls]


class Platform(str, Enum):
	"""Platforms that carry a minimum-version column in the index."""
	IOS = "ios"
	MACOS = "macos"
	TVOS = "tvos"
	WATCHOS = "watchos"
	VISIONOS = "visionos"

	@property
	def column(self) -> str:
		return f"min_{self.value}"

	@property
	def display_name(self) -> str:
		return {
			Platform.IOS: "iOS",
			Platform.MACOS: "macOS",
			Platform.TVOS: "tvOS",
			Platform.WATCHOS: "watchOS",
			Platform.VISIONOS: "visionOS",
		}[self]


def framework_identifier(name: str) -> str:
	"""Identifier form of a framework name: "App Intents" and "AppIntents" become "appintents"."""
	return name.strip().lower().replace(" ", "")


class DocumentFormat(str, Enum):
	JSON = "json"
	MARKDOWN = "markdown"


@dataclass
class Document:
	"""One indexed, searchable unit identified by its URI."""
	uri: str
	source: str
	title: str
	content: str
	framework: Optional[str] = None
	language: Optional[str] = None
	file_path: str = ""
	content_hash: str = ""
	last_indexed: Optional[str] = None
	source_type: str = "apple"
	kind: str = "unknown"
	min_ios: Optional[str] = None
	min_macos: Optional[str] = None
	min_tvos: Optional[str] = None
	min_watchos: Optional[str] = None
	min_visionos: Optional[str] = None
	json_data: Optional[str] = None
	# Derived at index time
	summary: str = ""
	summary_truncated: bool = False
	word_count: int = 0

	def min_version(self, platform: Platform) -> Optional[str]:
		return getattr(self, platform.column)

	def has_availability(self) -> bool:
		return any(self.min_version(p) for p in Platform)

	def to_dict(self) -> dict:
		return asdict(self)

	@classmethod
	def from_row(cls, row: aiosqlite.Row) -> "Document":
		return cls(
			uri=row["uri"],
			source=row["source"],
			title=row["title"],
			content=row["content"],
			framework=row["framework"] or None,
			language=row["language"],
			file_path=row["file_path"],
			content_hash=row["content_hash"],
			last_indexed=row["last_indexed"],
			source_type=row["source_type"],
			kind=row["kind"],
			min_ios=row["min_ios"],
			min_macos=row["min_macos"],
			min_tvos=row["min_tvos"],
			min_watchos=row["min_watchos"],
			min_visionos=row["min_visionos"],
			json_data=row["json_data"],
			summary=row["summary"],
			summary_truncated=bool(row["summary_truncated"]),
			word_count=row["word_count"],
		)


@dataclass
class PlatformAvailability:
	"""Minimum OS version at which a documented API is available."""
	platform: Platform
	introduced: str

	def __str__(self) -> str:
		return f"{self.platform.display_name} {self.introduced}+"


@dataclass
class SearchResult:
	"""A single ranked hit; only exists for the duration of a query."""
	uri: str
	source: str
	framework: str
	title: str
	summary: str
	rank: float
	word_count: int
	file_path: str = ""
	kind: str = "unknown"
	availability: list[PlatformAvailability] = field(default_factory=list)

	def min_version(self, platform: Platform) -> Optional[str]:
		for item in self.availability:
			if item.platform == platform:
				return item.introduced
		return None

	def to_dict(self) -> dict:
		return {
			"uri": self.uri,
			"source": self.source,
			"framework": self.framework,
			"title": self.title,
			"summary": self.summary,
			"rank": self.rank,
			"word_count": self.word_count,
			"kind": self.kind,
			"availability": {a.platform.value: a.introduced for a in self.availability},
		}


@dataclass
class SearchFilters:
	"""Query-time constraints applied by SearchIndex.search."""
	source: Optional[str] = None
	framework: Optional[str] = None
	language: Optional[str] = None
	min_ios: Optional[str] = None
	min_macos: Optional[str] = None
	min_tvos: Optional[str] = None
	min_watchos: Optional[str] = None
	min_visionos: Optional[str] = None
	include_archive: bool = False
	limit: int = 10

	def version_filters(self) -> dict[Platform, str]:
		"""Platform -> target version for every non-empty version filter."""
		filters = {}
		for platform in Platform:
			target = getattr(self, platform.column)
			if target is not None and target.strip():
				filters[platform] = target.strip()
		return filters


@dataclass
class SampleProject:
	"""A sample code project; `id` is unique across the sample index."""
	id: str
	title: str
	description: str = ""
	frameworks: list[str] = field(default_factory=list)
	readme: Optional[str] = None
	web_url: str = ""
	file_count: int = 0
	total_size: int = 0
	indexed_at: str = field(default_factory=lambda: datetime.now().isoformat())

	def __post_init__(self) -> None:
		self.frameworks = [framework_identifier(f) for f in self.frameworks if f.strip()]

	@classmethod
	def from_row(cls, row: aiosqlite.Row) -> "SampleProject":
		return cls(
			id=row["id"],
			title=row["title"],
			description=row["description"],
			frameworks=[f for f in row["frameworks"].split(",") if f],
			readme=row["readme"],
			web_url=row["web_url"],
			file_count=row["file_count"],
			total_size=row["total_size"],
			indexed_at=row["indexed_at"],
		)


@dataclass
class SampleFile:
	"""A source file belonging to exactly one sample project."""
	project_id: str
	path: str
	content: str
	filename: str = field(init=False)
	folder: str = field(init=False)
	extension: str = field(init=False)
	size: int = field(init=False)

	def __post_init__(self) -> None:
		self.filename = posixpath.basename(self.path)
		self.folder = posixpath.dirname(self.path)
		self.extension = posixpath.splitext(self.filename)[1].lstrip(".").lower()
		self.size = len(self.content.encode("utf-8"))

	@classmethod
	def from_row(cls, row: aiosqlite.Row) -> "SampleFile":
		return cls(project_id=row["project_id"], path=row["path"], content=row["content"])


# Extensions worth indexing from sample projects
SAMPLE_EXTENSIONS = frozenset({
	"swift",
	"h", "m", "mm",
	"c", "cpp", "hpp",
	"metal",
	"plist", "json", "strings", "entitlements", "xcconfig",
	"md", "txt",
	"storyboard", "xib",
})


def should_index_sample_path(path: str) -> bool:
	ext = posixpath.splitext(path)[1].lstrip(".").lower()
	return ext in SAMPLE_EXTENSIONS


@dataclass
class BatchResult:
	"""Outcome of indexing a batch; rejected records are reported, not raised."""
	indexed: int = 0
	rejected: list[tuple[str, str]] = field(default_factory=list)
