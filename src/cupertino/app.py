"""cupertino protocol server wiring."""

import logging
from typing import Optional

from mcp.server.stdio import stdio_server

from . import __version__
from .config import Config
from .search.index import SearchIndex
from .search.samples import SampleIndex
from .server import (
	CompositePromptProvider,
	CompositeResourceProvider,
	CompositeToolProvider,
	ProtocolServer,
)
from .tools import register_all_providers

logger = logging.getLogger(__name__)

SERVER_NAME = "cupertino"
INSTRUCTIONS = (
	"Apple developer documentation, Swift Evolution, Swift.org and sample code. "
	"Use `search` to find documents, then `read_document` with a result URI."
)


def build_server(config: Config, index: SearchIndex, samples: Optional[SampleIndex] = None) -> ProtocolServer:
	"""ProtocolServer with every provider registered against the given indexes."""
	tools = CompositeToolProvider()
	resources = CompositeResourceProvider()
	prompts = CompositePromptProvider()
	register_all_providers(tools, resources, prompts, config, index, samples)
	return ProtocolServer(
		SERVER_NAME,
		__version__,
		tools=tools,
		resources=resources,
		prompts=prompts,
		instructions=INSTRUCTIONS,
	)


def open_indexes(config: Config) -> tuple[SearchIndex, SampleIndex]:
	"""Indexes at the configured paths; callers must init() and close() them."""
	index = SearchIndex(
		config.search_db_path,
		summary_max_length=config.summary_max_length,
		default_limit=config.default_search_limit,
		max_limit=config.max_search_limit,
	)
	return index, SampleIndex(config.samples_db_path)


async def run_stdio(config: Config) -> None:
	"""Serve on stdin/stdout until the client shuts the session down."""
	index, samples = open_indexes(config)
	await index.init()
	try:
		await samples.init()
		server = build_server(config, index, samples)
		async with stdio_server() as (read_stream, write_stream):
			await server.serve(read_stream, write_stream)
			await write_stream.aclose()
			# The transport only exits at end of input; later messages are dropped
			async for _ in read_stream:
				logger.debug("Ignoring message received after shutdown")
	finally:
		await samples.close()
		await index.close()
