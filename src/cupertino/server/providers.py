"""
Provider interfaces and the composites that merge them.

A provider exposes named tools, URI-addressed resources or named prompts.
The server talks to one composite per kind; each composite merges the
listings of its providers in registration order and routes calls by exact
name or URI. When two providers claim the same name the first one
registered wins and a configuration warning is logged.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from mcp.types import (
	CallToolResult,
	GetPromptResult,
	ListPromptsResult,
	ListResourcesResult,
	ListResourceTemplatesResult,
	ListToolsResult,
	Prompt,
	ReadResourceResult,
	Tool,
)

from ..errors import InvalidArgumentError, ResourceNotFoundError, UnknownPromptError, UnknownToolError

logger = logging.getLogger(__name__)


class ToolProvider(ABC):
	"""Source of callable tools."""

	@abstractmethod
	async def list_tools(self, cursor: Optional[str] = None) -> ListToolsResult:
		...

	@abstractmethod
	async def call_tool(self, name: str, arguments: Optional[dict[str, Any]]) -> CallToolResult:
		"""
		Run a tool.

		Raises:
			UnknownToolError: `name` is not one of this provider's tools.
			MissingArgumentError, InvalidArgumentError: Bad arguments.
		"""
		...


class ResourceProvider(ABC):
	"""Source of readable resources."""

	@abstractmethod
	async def list_resources(self, cursor: Optional[str] = None) -> ListResourcesResult:
		...

	async def list_resource_templates(self, cursor: Optional[str] = None) -> ListResourceTemplatesResult:
		return ListResourceTemplatesResult(resourceTemplates=[])

	@abstractmethod
	async def read_resource(self, uri: str) -> Optional[ReadResourceResult]:
		"""Contents of `uri`, or None if this provider does not serve it."""
		...


class PromptProvider(ABC):
	"""Source of prompt templates."""

	@abstractmethod
	async def list_prompts(self, cursor: Optional[str] = None) -> ListPromptsResult:
		...

	@abstractmethod
	async def get_prompt(self, name: str, arguments: Optional[dict[str, str]]) -> GetPromptResult:
		...


async def _all_tools(provider: ToolProvider) -> list[Tool]:
	tools: list[Tool] = []
	cursor = None
	while True:
		page = await provider.list_tools(cursor)
		tools.extend(page.tools)
		cursor = page.next_cursor
		if not cursor:
			return tools


async def _all_prompts(provider: PromptProvider) -> list[Prompt]:
	prompts: list[Prompt] = []
	cursor = None
	while True:
		page = await provider.list_prompts(cursor)
		prompts.extend(page.prompts)
		cursor = page.next_cursor
		if not cursor:
			return prompts


class CompositeToolProvider(ToolProvider):
	"""
	Merges tool providers into one namespace.

	Usage:
		tools = CompositeToolProvider()
		tools.register(DocsToolProvider(index, samples))
		tools.register(SampleToolProvider(samples))
		result = await tools.call_tool("search", {"query": "View"})
	"""

	def __init__(self) -> None:
		self.providers: list[ToolProvider] = []
		self._routes: Optional[dict[str, tuple[Tool, ToolProvider]]] = None

	def register(self, provider: ToolProvider) -> None:
		self.providers.append(provider)
		self._routes = None

	def __bool__(self) -> bool:
		return bool(self.providers)

	async def _route_table(self) -> dict[str, tuple[Tool, ToolProvider]]:
		if self._routes is None:
			routes: dict[str, tuple[Tool, ToolProvider]] = {}
			for provider in self.providers:
				for tool in await _all_tools(provider):
					if tool.name in routes:
						logger.warning(
							f"Duplicate tool '{tool.name}' from {type(provider).__name__} ignored; "
							f"already provided by {type(routes[tool.name][1]).__name__}"
						)
						continue
					routes[tool.name] = (tool, provider)
			self._routes = routes
		return self._routes

	async def list_tools(self, cursor: Optional[str] = None) -> ListToolsResult:
		routes = await self._route_table()
		return ListToolsResult(tools=[tool for tool, _ in routes.values()])

	async def call_tool(self, name: str, arguments: Optional[dict[str, Any]]) -> CallToolResult:
		routes = await self._route_table()
		if name not in routes:
			raise UnknownToolError(name)
		_, provider = routes[name]
		return await provider.call_tool(name, arguments or {})


class CompositeResourceProvider(ResourceProvider):
	"""
	Chains resource providers.

	Listing pages walk the providers in registration order; the cursor
	"<provider index>:<inner cursor>" records the position. Reads go to the
	first provider that serves the URI.
	"""

	def __init__(self) -> None:
		self.providers: list[ResourceProvider] = []

	def register(self, provider: ResourceProvider) -> None:
		self.providers.append(provider)

	def __bool__(self) -> bool:
		return bool(self.providers)

	def _parse_cursor(self, cursor: Optional[str]) -> tuple[int, Optional[str]]:
		if not cursor:
			return 0, None
		position, _, inner = cursor.partition(":")
		try:
			index = int(position)
		except ValueError:
			raise InvalidArgumentError("cursor", f"malformed cursor {cursor!r}") from None
		if index < 0 or index >= len(self.providers):
			raise InvalidArgumentError("cursor", f"cursor {cursor!r} is out of range")
		return index, inner or None

	async def list_resources(self, cursor: Optional[str] = None) -> ListResourcesResult:
		if not self.providers:
			return ListResourcesResult(resources=[])

		index, inner = self._parse_cursor(cursor)
		page = await self.providers[index].list_resources(inner)

		next_cursor = None
		if page.next_cursor:
			next_cursor = f"{index}:{page.next_cursor}"
		elif index + 1 < len(self.providers):
			next_cursor = f"{index + 1}:"
		return ListResourcesResult(resources=page.resources, nextCursor=next_cursor)

	async def list_resource_templates(self, cursor: Optional[str] = None) -> ListResourceTemplatesResult:
		templates = []
		seen = set()
		for provider in self.providers:
			for template in (await provider.list_resource_templates()).resource_templates:
				if template.uri_template in seen:
					logger.warning(f"Duplicate resource template '{template.uri_template}' ignored")
					continue
				seen.add(template.uri_template)
				templates.append(template)
		return ListResourceTemplatesResult(resourceTemplates=templates)

	async def read_resource(self, uri: str) -> ReadResourceResult:
		for provider in self.providers:
			result = await provider.read_resource(uri)
			if result is not None:
				return result
		raise ResourceNotFoundError(uri)


class CompositePromptProvider(PromptProvider):
	"""Merges prompt providers into one namespace; first registered wins."""

	def __init__(self) -> None:
		self.providers: list[PromptProvider] = []
		self._routes: Optional[dict[str, tuple[Prompt, PromptProvider]]] = None

	def register(self, provider: PromptProvider) -> None:
		self.providers.append(provider)
		self._routes = None

	def __bool__(self) -> bool:
		return bool(self.providers)

	async def _route_table(self) -> dict[str, tuple[Prompt, PromptProvider]]:
		if self._routes is None:
			routes: dict[str, tuple[Prompt, PromptProvider]] = {}
			for provider in self.providers:
				for prompt in await _all_prompts(provider):
					if prompt.name in routes:
						logger.warning(f"Duplicate prompt '{prompt.name}' from {type(provider).__name__} ignored")
						continue
					routes[prompt.name] = (prompt, provider)
			self._routes = routes
		return self._routes

	async def list_prompts(self, cursor: Optional[str] = None) -> ListPromptsResult:
		routes = await self._route_table()
		return ListPromptsResult(prompts=[prompt for prompt, _ in routes.values()])

	async def get_prompt(self, name: str, arguments: Optional[dict[str, str]]) -> GetPromptResult:
		routes = await self._route_table()
		if name not in routes:
			raise UnknownPromptError(name)
		_, provider = routes[name]
		return await provider.get_prompt(name, arguments or {})
