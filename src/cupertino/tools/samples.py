"""Sample code tools - list projects, read a project, read a source file."""

from typing import Any, Optional

from mcp.types import CallToolResult, ListToolsResult, Tool

from ..errors import InvalidArgumentError, UnknownToolError
from ..search.samples import SampleIndex
from ..server.providers import ToolProvider
from .arguments import ArgumentExtractor
from .docs import text_result
from .formatters import format_sample_file, format_sample_list, format_sample_project

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 500

TOOLS = [
	Tool(
		name="list_samples",
		description="List indexed Apple sample code projects.",
		inputSchema={
			"type": "object",
			"properties": {
				"framework": {"type": "string", "description": "Only projects using this framework"},
				"limit": {"type": "integer", "description": "Maximum projects (default 50)"},
			},
		},
	),
	Tool(
		name="read_sample",
		description="Read a sample project's README, metadata and file list.",
		inputSchema={
			"type": "object",
			"properties": {
				"project_id": {"type": "string", "description": "Project ID from list_samples or search"},
			},
			"required": ["project_id"],
		},
	),
	Tool(
		name="read_sample_file",
		description="Read one source file from a sample project.",
		inputSchema={
			"type": "object",
			"properties": {
				"project_id": {"type": "string", "description": "Project ID"},
				"file_path": {"type": "string", "description": "Path relative to the project root"},
			},
			"required": ["project_id", "file_path"],
		},
	),
]


class SampleToolProvider(ToolProvider):
	"""Tools over the sample code index."""

	def __init__(self, samples: SampleIndex):
		self.samples = samples
		self._handlers = {
			"list_samples": self._list_samples,
			"read_sample": self._read_sample,
			"read_sample_file": self._read_sample_file,
		}

	async def list_tools(self, cursor: Optional[str] = None) -> ListToolsResult:
		return ListToolsResult(tools=list(TOOLS))

	async def call_tool(self, name: str, arguments: Optional[dict[str, Any]]) -> CallToolResult:
		handler = self._handlers.get(name)
		if handler is None:
			raise UnknownToolError(name)
		return await handler(ArgumentExtractor(arguments))

	async def _list_samples(self, args: ArgumentExtractor) -> CallToolResult:
		framework = args.optional_str("framework")
		limit = args.limit(DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)

		projects = await self.samples.list_projects(framework=framework, limit=limit)
		total_projects = await self.samples.project_count()
		total_files = await self.samples.file_count()
		return text_result(format_sample_list(projects, total_projects, total_files, framework))

	async def _read_sample(self, args: ArgumentExtractor) -> CallToolResult:
		project_id = args.require_str("project_id")
		project = await self.samples.get_project(project_id)
		if project is None:
			raise InvalidArgumentError("project_id", f"Project not found: {project_id}")
		files = await self.samples.list_files(project_id)
		return text_result(format_sample_project(project, files))

	async def _read_sample_file(self, args: ArgumentExtractor) -> CallToolResult:
		project_id = args.require_str("project_id")
		file_path = args.require_str("file_path")
		file = await self.samples.get_file(project_id, file_path)
		if file is None:
			raise InvalidArgumentError("file_path", f"File not found: {file_path} in project {project_id}")
		return text_result(format_sample_file(file))
