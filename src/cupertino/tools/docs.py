"""Documentation tools - unified search, framework listing, document reads."""

import logging
from typing import Any, Optional

from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool

from ..errors import InvalidArgumentError, InvalidQueryError, UnknownToolError
from ..models import Platform, SearchFilters, Source
from ..search.index import SearchIndex
from ..search.samples import SampleIndex
from ..server.providers import ToolProvider
from .arguments import ArgumentExtractor
from .formatters import (
	NO_RESULTS,
	TIP_TRY_ARCHIVE,
	format_frameworks,
	format_sample_search,
	format_search_results,
)

logger = logging.getLogger(__name__)

# Accepted for the sample index besides "samples"
SAMPLE_SOURCE_ALIASES = ("samples", "apple-sample-code")
ALL_SOURCES = "all"


def text_result(text: str) -> CallToolResult:
	return CallToolResult(content=[TextContent(type="text", text=text)])


def _search_schema() -> dict:
	properties: dict[str, Any] = {
		"query": {"type": "string", "description": "Search terms"},
		"source": {
			"type": "string",
			"description": "Restrict to one source (default: all documentation sources)",
			"enum": Source.values() + [ALL_SOURCES],
		},
		"framework": {"type": "string", "description": "Framework name, e.g. swiftui"},
		"language": {"type": "string", "description": "swift or objc"},
		"limit": {"type": "integer", "description": "Maximum results (default 10, max 50)"},
		"include_archive": {
			"type": "boolean",
			"description": "Include archived guides in results (default false)",
		},
	}
	for platform in Platform:
		properties[platform.column] = {
			"type": "string",
			"description": f"Only APIs available on {platform.display_name} at this version, e.g. 15.0",
		}
	return {"type": "object", "properties": properties, "required": ["query"]}


TOOLS = [
	Tool(
		name="search",
		description=(
			"Search Apple developer documentation, Swift Evolution proposals, Swift.org, "
			"Swift packages and sample code. Results are ranked and include availability."
		),
		inputSchema=_search_schema(),
	),
	Tool(
		name="list_frameworks",
		description="List indexed frameworks with their document counts.",
		inputSchema={"type": "object", "properties": {}},
	),
	Tool(
		name="read_document",
		description="Read a full document by the URI returned from search.",
		inputSchema={
			"type": "object",
			"properties": {
				"uri": {"type": "string", "description": "Document URI, e.g. apple-docs://swiftui/view"},
				"format": {
					"type": "string",
					"enum": ["json", "markdown"],
					"description": "Output format (default json)",
				},
			},
			"required": ["uri"],
		},
	),
]


class DocsToolProvider(ToolProvider):
	"""
	Tools over the documentation index (and the sample index for source=samples).

	Usage:
		provider = DocsToolProvider(index, samples, teaser_limit=2)
		result = await provider.call_tool("search", {"query": "View", "source": "apple-docs"})
	"""

	def __init__(
		self,
		index: SearchIndex,
		samples: Optional[SampleIndex] = None,
		teaser_limit: int = 2,
		default_limit: int = 10,
		max_limit: int = 50,
	):
		self.index = index
		self.samples = samples
		self.teaser_limit = teaser_limit
		self.default_limit = default_limit
		self.max_limit = max_limit

		self._handlers = {
			"search": self._search,
			"list_frameworks": self._list_frameworks,
			"read_document": self._read_document,
		}

	async def list_tools(self, cursor: Optional[str] = None) -> ListToolsResult:
		return ListToolsResult(tools=list(TOOLS))

	async def call_tool(self, name: str, arguments: Optional[dict[str, Any]]) -> CallToolResult:
		handler = self._handlers.get(name)
		if handler is None:
			raise UnknownToolError(name)
		return await handler(ArgumentExtractor(arguments))

	# ------------------------------------------------------------------
	# search
	# ------------------------------------------------------------------

	async def _search(self, args: ArgumentExtractor) -> CallToolResult:
		query = args.require_str("query")
		source = args.optional_str("source")
		source = source.lower() if source else None
		framework = args.optional_str("framework")
		limit = args.limit(self.default_limit, self.max_limit)

		if source in SAMPLE_SOURCE_ALIASES:
			return await self._search_samples(query, framework, limit)
		if source == ALL_SOURCES:
			source = None
		if source is not None and source not in Source.values():
			raise InvalidArgumentError("source", f"unknown source {source!r}")

		language = args.optional_str("language")
		filters = SearchFilters(
			source=source,
			framework=framework,
			language=language.lower() if language else None,
			include_archive=args.include_archive(),
			limit=limit,
			**args.min_versions(),
		)

		results = await self.index.search(query, filters)
		teasers = await self._teasers(query, filters)

		empty_message = NO_RESULTS
		if not results and not filters.include_archive and source != Source.APPLE_ARCHIVE.value:
			empty_message = f"{NO_RESULTS}\n\n{TIP_TRY_ARCHIVE}"

		return text_result(format_search_results(query, results, filters, teasers, empty_message))

	async def _search_samples(self, query: str, framework: Optional[str], limit: int) -> CallToolResult:
		if self.samples is None:
			raise InvalidArgumentError("source", "sample code index is not available")
		projects = await self.samples.search_projects(query, framework=framework, limit=limit)
		files = await self.samples.search_files(query, limit=limit)
		return text_result(format_sample_search(query, projects, files, framework))

	async def _teasers(self, query: str, filters: SearchFilters) -> dict[str, list[str]]:
		"""
		Top titles from the sources the user did not search.

		An unrestricted search already spans every documentation source, so
		only sample code is teased. Archive teasers follow include_archive.
		"""
		if self.teaser_limit <= 0:
			return {}

		teasers: dict[str, list[str]] = {}
		if filters.source is not None:
			for source in Source:
				if source.value == filters.source or source is Source.SAMPLES:
					continue
				if source is Source.APPLE_ARCHIVE and not filters.include_archive:
					continue
				try:
					hits = await self.index.search(query, SearchFilters(
						source=source.value,
						framework=filters.framework,
						include_archive=filters.include_archive,
						limit=self.teaser_limit,
					))
				except InvalidQueryError:
					return teasers
				teasers[source.value] = [hit.title for hit in hits]

		if self.samples is not None:
			try:
				projects = await self.samples.search_projects(
					query, framework=filters.framework, limit=self.teaser_limit,
				)
			except InvalidQueryError:
				projects = []
			teasers[Source.SAMPLES.value] = [project.title for project in projects]

		return teasers

	# ------------------------------------------------------------------
	# list_frameworks / read_document
	# ------------------------------------------------------------------

	async def _list_frameworks(self, args: ArgumentExtractor) -> CallToolResult:
		frameworks = await self.index.list_frameworks()
		total = await self.index.document_count()
		return text_result(format_frameworks(frameworks, total))

	async def _read_document(self, args: ArgumentExtractor) -> CallToolResult:
		uri = args.require_str("uri")
		fmt = args.format()
		content = await self.index.get_document_content(uri, fmt)
		if content is None:
			raise InvalidArgumentError("uri", f"Document not found: {uri}")
		return text_result(content)
