"""
Protocol Server - JSON-RPC sessions over the mcp stdio transport.

The transport hands over decoded messages; lifecycle messages (initialize,
shutdown, exit) are handled in order as they arrive and every other request
runs as its own task so a slow search never blocks a ping. Responses are
sent under a lock. On a shutdown notification or end of input the server
stops reading, waits for the requests still in flight and terminates.
"""

import asyncio
import logging
from typing import Any, AsyncIterable, Awaitable, Callable, Optional, Protocol, Union

from mcp.shared.message import SessionMessage
from mcp.types import (
	INTERNAL_ERROR,
	INVALID_PARAMS,
	INVALID_REQUEST,
	METHOD_NOT_FOUND,
	CallToolRequestParams,
	GetPromptRequestParams,
	Implementation,
	InitializeResult,
	PromptsCapability,
	ResourcesCapability,
	ServerCapabilities,
	ToolsCapability,
)
from pydantic import BaseModel, ValidationError

from ..errors import INVALID_ARGUMENT, CupertinoError, InvalidQueryError, ToolError
from .protocol import (
	JsonRpcError,
	Message,
	ServerState,
	decode,
	failure,
	from_wire,
	negotiate_version,
	success,
	to_wire,
	transport_error,
)
from .providers import CompositePromptProvider, CompositeResourceProvider, CompositeToolProvider

logger = logging.getLogger(__name__)

SHUTDOWN_METHODS = frozenset({"shutdown", "exit", "notifications/shutdown"})
LIFECYCLE_METHODS = frozenset({"initialize", "notifications/initialized"}) | SHUTDOWN_METHODS

Handler = Callable[[dict], Awaitable[Any]]
ReadStream = AsyncIterable[Union[SessionMessage, Exception]]


class WriteStream(Protocol):
	async def send(self, item: SessionMessage) -> None: ...


def _dump(result: Any) -> dict:
	if isinstance(result, BaseModel):
		return result.model_dump(mode="json", by_alias=True, exclude_none=True)
	return result


def _cursor(params: dict) -> Optional[str]:
	cursor = params.get("cursor")
	if cursor is not None and not isinstance(cursor, str):
		raise JsonRpcError(INVALID_PARAMS, "cursor must be a string")
	return cursor


def _validate(model: type[BaseModel], params: dict) -> Any:
	try:
		return model.model_validate(params)
	except ValidationError as e:
		raise JsonRpcError(INVALID_PARAMS, f"Invalid params: {e}") from e


class ProtocolServer:
	"""
	A single-client protocol session over registered providers.

	Usage:
		server = ProtocolServer("cupertino", __version__, tools=tools, resources=resources)
		async with stdio_server() as (read_stream, write_stream):
			await server.serve(read_stream, write_stream)
	"""

	def __init__(
		self,
		name: str,
		version: str,
		tools: Optional[CompositeToolProvider] = None,
		resources: Optional[CompositeResourceProvider] = None,
		prompts: Optional[CompositePromptProvider] = None,
		instructions: Optional[str] = None,
	):
		self.name = name
		self.version = version
		self.tools = tools if tools is not None else CompositeToolProvider()
		self.resources = resources if resources is not None else CompositeResourceProvider()
		self.prompts = prompts if prompts is not None else CompositePromptProvider()
		self.instructions = instructions

		self.state = ServerState.UNINITIALIZED
		self.protocol_version: Optional[str] = None
		self.client_info: Optional[dict] = None

		self._handlers: dict[str, Handler] = {
			"initialize": self._initialize,
			"ping": self._ping,
			"tools/list": self._list_tools,
			"tools/call": self._call_tool,
			"resources/list": self._list_resources,
			"resources/read": self._read_resource,
			"resources/templates/list": self._list_resource_templates,
			"prompts/list": self._list_prompts,
			"prompts/get": self._get_prompt,
		}

	# ------------------------------------------------------------------
	# Capabilities
	# ------------------------------------------------------------------

	def capabilities(self) -> ServerCapabilities:
		return ServerCapabilities(
			tools=ToolsCapability(listChanged=False) if self.tools else None,
			resources=ResourcesCapability(subscribe=False, listChanged=False) if self.resources else None,
			prompts=PromptsCapability(listChanged=False) if self.prompts else None,
		)

	# ------------------------------------------------------------------
	# Dispatch
	# ------------------------------------------------------------------

	async def handle_line(self, line: str | bytes) -> Optional[dict]:
		"""Decode one raw JSON-RPC line and return the response to send, if any."""
		try:
			message = from_wire(decode(line))
		except JsonRpcError as e:
			logger.warning(f"Rejected message: {e.message}")
			return failure(None, e)
		if message is None:
			return None
		return await self.handle_message(message)

	async def handle_message(self, message: Message) -> Optional[dict]:
		"""
		Dispatch one message.

		Returns:
			The response envelope, or None for notifications
		"""
		if message.method in SHUTDOWN_METHODS:
			self._begin_shutdown()
			return None if message.is_notification else success(message.id, {})

		if message.is_notification:
			if message.method != "notifications/initialized":
				logger.debug(f"Ignoring notification {message.method}")
			return None

		try:
			result = await self._dispatch(message)
		except JsonRpcError as e:
			return failure(message.id, e)
		return success(message.id, _dump(result))

	async def _dispatch(self, message: Message) -> Any:
		if self.state is ServerState.UNINITIALIZED and message.method not in ("initialize", "ping"):
			raise JsonRpcError(INVALID_REQUEST, "Server not initialized")
		if self.state is not ServerState.UNINITIALIZED and message.method == "initialize":
			raise JsonRpcError(INVALID_REQUEST, "Server already initialized")

		handler = self._handlers.get(message.method)
		if handler is None:
			raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {message.method}")

		try:
			return await handler(message.params)
		except JsonRpcError:
			raise
		except ToolError as e:
			raise JsonRpcError(e.code, str(e)) from e
		except InvalidQueryError as e:
			raise JsonRpcError(INVALID_ARGUMENT, str(e)) from e
		except CupertinoError as e:
			logger.error(f"{message.method} failed: {e}")
			raise JsonRpcError(INTERNAL_ERROR, str(e)) from e
		except Exception as e:
			logger.exception(f"Unhandled error in {message.method}")
			raise JsonRpcError(INTERNAL_ERROR, f"Internal error: {e}") from e

	def _begin_shutdown(self) -> None:
		if self.state is not ServerState.TERMINATED:
			logger.info("Shutdown requested")
			self.state = ServerState.SHUTTING_DOWN

	# ------------------------------------------------------------------
	# Handlers
	# ------------------------------------------------------------------

	async def _initialize(self, params: dict) -> InitializeResult:
		self.protocol_version = negotiate_version(params.get("protocolVersion"))
		client_info = params.get("clientInfo")
		self.client_info = client_info if isinstance(client_info, dict) else None
		self.state = ServerState.READY

		client_name = (self.client_info or {}).get("name", "unknown client")
		logger.info(f"Initialized session with {client_name} (protocol {self.protocol_version})")

		return InitializeResult(
			protocolVersion=self.protocol_version,
			capabilities=self.capabilities(),
			serverInfo=Implementation(name=self.name, version=self.version),
			instructions=self.instructions,
		)

	async def _ping(self, params: dict) -> dict:
		return {}

	async def _list_tools(self, params: dict):
		return await self.tools.list_tools(_cursor(params))

	async def _call_tool(self, params: dict):
		request = _validate(CallToolRequestParams, params)
		logger.debug(f"tools/call {request.name}")
		return await self.tools.call_tool(request.name, request.arguments)

	async def _list_resources(self, params: dict):
		return await self.resources.list_resources(_cursor(params))

	async def _list_resource_templates(self, params: dict):
		return await self.resources.list_resource_templates(_cursor(params))

	async def _read_resource(self, params: dict):
		# The raw string is used so URL parsing never rewrites the URI
		uri = params.get("uri")
		if not isinstance(uri, str) or not uri:
			raise JsonRpcError(INVALID_PARAMS, "uri is required")
		return await self.resources.read_resource(uri)

	async def _list_prompts(self, params: dict):
		return await self.prompts.list_prompts(_cursor(params))

	async def _get_prompt(self, params: dict):
		request = _validate(GetPromptRequestParams, params)
		return await self.prompts.get_prompt(request.name, request.arguments)

	# ------------------------------------------------------------------
	# Serve loop
	# ------------------------------------------------------------------

	async def serve(self, read_stream: ReadStream, write_stream: WriteStream) -> None:
		"""
		Handle messages until shutdown or end of input.

		Args:
			read_stream: Decoded messages, or decoding exceptions, from the transport
			write_stream: Receives one SessionMessage per response
		"""
		write_lock = asyncio.Lock()
		in_flight: set[asyncio.Task] = set()

		async def write(response: Optional[dict]) -> None:
			if response is None:
				return
			async with write_lock:
				await write_stream.send(SessionMessage(to_wire(response)))

		async def respond(message: Message) -> None:
			try:
				await write(await self.handle_message(message))
			except Exception as e:
				logger.exception(f"Failed to answer {message.method}")
				if not message.is_notification:
					await write(failure(message.id, JsonRpcError(INTERNAL_ERROR, f"Internal error: {e}")))

		logger.info(f"{self.name} {self.version} serving")
		try:
			async for incoming in read_stream:
				if isinstance(incoming, Exception):
					error = transport_error(incoming)
					logger.warning(f"Rejected message: {error.message}")
					await write(failure(None, error))
					continue

				message = from_wire(incoming.message)
				if message is None:
					logger.debug("Ignoring response sent by the client")
					continue

				if message.method in LIFECYCLE_METHODS:
					await respond(message)
				else:
					task = asyncio.create_task(respond(message))
					in_flight.add(task)
					task.add_done_callback(in_flight.discard)

				if self.state not in (ServerState.UNINITIALIZED, ServerState.READY):
					break
			else:
				logger.info("End of input")
		finally:
			self._begin_shutdown()
			if in_flight:
				logger.info(f"Waiting for {len(in_flight)} in-flight request(s)")
				await asyncio.gather(*in_flight, return_exceptions=True)
			self.state = ServerState.TERMINATED
			logger.info("Server terminated")
