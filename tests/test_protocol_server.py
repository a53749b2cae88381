"""Tests for the JSON-RPC protocol server and provider composites."""

import asyncio
import json
import logging
from typing import Any, Optional
from unittest.mock import patch

import anyio
import pytest
from mcp.shared.message import SessionMessage
from mcp.types import (
	INTERNAL_ERROR,
	INVALID_PARAMS,
	INVALID_REQUEST,
	METHOD_NOT_FOUND,
	PARSE_ERROR,
	CallToolResult,
	GetPromptResult,
	ListPromptsResult,
	ListResourcesResult,
	ListToolsResult,
	Prompt,
	PromptMessage,
	ReadResourceResult,
	Resource,
	TextContent,
	TextResourceContents,
	Tool,
	jsonrpc_message_adapter,
)
from pydantic import ValidationError

from cupertino.errors import (
	INVALID_ARGUMENT,
	RESOURCE_NOT_FOUND,
	UNKNOWN_PROMPT,
	UNKNOWN_TOOL,
	InvalidQueryError,
	UnknownToolError,
)
from cupertino.server import (
	CompositePromptProvider,
	CompositeResourceProvider,
	CompositeToolProvider,
	JsonRpcError,
	ProtocolServer,
	PromptProvider,
	ResourceProvider,
	ServerState,
	ToolProvider,
	negotiate_version,
)
from cupertino.server.protocol import decode, failure, from_wire, success, to_wire, transport_error


class EchoTools(ToolProvider):
	"""Tools: echo, slow (sleeps), bad_query, explode."""

	def __init__(self, label: str = "echo", names: tuple[str, ...] = ("echo", "slow", "bad_query", "explode")):
		self.label = label
		self.names = names
		self.calls: list[tuple[str, dict]] = []

	async def list_tools(self, cursor: Optional[str] = None) -> ListToolsResult:
		return ListToolsResult(tools=[
			Tool(name=name, description=f"{self.label} {name}", inputSchema={"type": "object"})
			for name in self.names
		])

	async def call_tool(self, name: str, arguments: Optional[dict[str, Any]]) -> CallToolResult:
		self.calls.append((name, arguments))
		if name == "slow":
			await asyncio.sleep(0.05)
		elif name == "bad_query":
			raise InvalidQueryError("Query cannot be empty")
		elif name == "explode":
			raise RuntimeError("boom")
		elif name not in self.names:
			raise UnknownToolError(name)
		return CallToolResult(content=[TextContent(type="text", text=f"{self.label}:{name}:{arguments}")])


class PagedResources(ResourceProvider):
	"""Serves `count` resources under `scheme`, two per page."""

	def __init__(self, scheme: str, count: int):
		self.scheme = scheme
		self.uris = [f"{scheme}://item/{i}" for i in range(count)]

	async def list_resources(self, cursor: Optional[str] = None) -> ListResourcesResult:
		offset = int(cursor or 0)
		page = self.uris[offset:offset + 2]
		more = offset + 2 < len(self.uris)
		return ListResourcesResult(
			resources=[Resource(uri=uri, name=uri) for uri in page],
			nextCursor=str(offset + 2) if more else None,
		)

	async def read_resource(self, uri: str) -> Optional[ReadResourceResult]:
		if uri not in self.uris:
			return None
		return ReadResourceResult(contents=[TextResourceContents(uri=uri, text=f"body of {uri}", mimeType="text/plain")])


class GreetingPrompts(PromptProvider):
	async def list_prompts(self, cursor: Optional[str] = None) -> ListPromptsResult:
		return ListPromptsResult(prompts=[Prompt(name="greet")])

	async def get_prompt(self, name: str, arguments: Optional[dict[str, str]]) -> GetPromptResult:
		who = (arguments or {}).get("who", "world")
		return GetPromptResult(messages=[
			PromptMessage(role="user", content=TextContent(type="text", text=f"Hello {who}")),
		])


def make_server(**kwargs) -> ProtocolServer:
	tools = CompositeToolProvider()
	tools.register(EchoTools())
	resources = CompositeResourceProvider()
	resources.register(PagedResources("alpha", 3))
	prompts = CompositePromptProvider()
	prompts.register(GreetingPrompts())
	return ProtocolServer("test-server", "1.0", tools=tools, resources=resources, prompts=prompts, **kwargs)


def request(request_id: Any, method: str, params: Optional[dict] = None) -> str:
	message = {"jsonrpc": "2.0", "id": request_id, "method": method}
	if params is not None:
		message["params"] = params
	return json.dumps(message)


def notification(method: str) -> str:
	return json.dumps({"jsonrpc": "2.0", "method": method})


INITIALIZE = {"protocolVersion": "2025-06-18", "capabilities": {}, "clientInfo": {"name": "pytest", "version": "1"}}


async def initialized(server: ProtocolServer) -> ProtocolServer:
	await server.handle_line(request(0, "initialize", INITIALIZE))
	await server.handle_line(notification("notifications/initialized"))
	return server


class TestEnvelope:
	"""Decoding incoming messages and encoding responses."""

	def test_request_and_notification(self):
		message = from_wire(decode(request(7, "ping")))
		assert message.id == 7
		assert message.params == {}
		assert not message.is_notification
		assert from_wire(decode(notification("notifications/initialized"))).is_notification

	def test_client_response_is_not_dispatched(self):
		assert from_wire(decode('{"jsonrpc":"2.0","id":1,"result":{}}')) is None

	@pytest.mark.parametrize("line,code", [
		("{not json", PARSE_ERROR),
		("[]", INVALID_REQUEST),
		('"text"', INVALID_REQUEST),
		('{"jsonrpc":"1.0","id":1,"method":"ping"}', INVALID_REQUEST),
		('{"jsonrpc":"2.0","id":1}', INVALID_REQUEST),
		('{"jsonrpc":"2.0","id":1,"method":"ping","params":[1]}', INVALID_REQUEST),
	])
	def test_malformed(self, line, code):
		with pytest.raises(JsonRpcError) as exc:
			decode(line)
		assert exc.value.code == code

	def test_other_transport_errors_are_parse_errors(self):
		assert transport_error(UnicodeDecodeError("utf-8", b"\xff", 0, 1, "bad")).code == PARSE_ERROR

	def test_error_with_null_id_on_the_wire(self):
		wire = to_wire(failure(None, JsonRpcError(PARSE_ERROR, "Parse error")))
		encoded = json.loads(wire.model_dump_json(by_alias=True, exclude_unset=True))
		assert encoded == {"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "Parse error"}}

	def test_success_on_the_wire(self):
		wire = to_wire(success("a", {"text": "a\nb"}))
		line = wire.model_dump_json(by_alias=True, exclude_unset=True)
		assert "\n" not in line
		assert json.loads(line) == {"jsonrpc": "2.0", "id": "a", "result": {"text": "a\nb"}}


class TestVersionNegotiation:
	"""protocolVersion selection."""

	def test_supported_version_echoed(self):
		assert negotiate_version("2025-03-26") == "2025-03-26"

	def test_newer_client_gets_latest(self):
		assert negotiate_version("2099-01-01") == "2025-06-18"

	def test_between_versions(self):
		assert negotiate_version("2025-01-01") == "2024-11-05"

	def test_too_old(self):
		with pytest.raises(JsonRpcError) as exc:
			negotiate_version("2023-01-01")
		assert exc.value.code == INVALID_PARAMS
		assert "2025-06-18" in exc.value.data["supported"]


class TestLifecycle:
	"""initialize, pre-init requests and shutdown."""

	@pytest.mark.asyncio
	async def test_initialize(self):
		server = make_server(instructions="Use search.")
		response = await server.handle_line(request(1, "initialize", INITIALIZE))

		result = response["result"]
		assert response["id"] == 1
		assert result["protocolVersion"] == "2025-06-18"
		assert result["serverInfo"] == {"name": "test-server", "version": "1.0"}
		assert result["instructions"] == "Use search."
		assert set(result["capabilities"]) == {"tools", "resources", "prompts"}
		assert server.state is ServerState.READY
		assert server.client_info["name"] == "pytest"

	@pytest.mark.asyncio
	async def test_capabilities_only_for_registered_kinds(self):
		tools = CompositeToolProvider()
		tools.register(EchoTools())
		server = ProtocolServer("t", "1", tools=tools)
		response = await server.handle_line(request(1, "initialize", INITIALIZE))
		assert set(response["result"]["capabilities"]) == {"tools"}

	@pytest.mark.asyncio
	async def test_request_before_initialize(self):
		server = make_server()
		response = await server.handle_line(request(1, "tools/list"))
		assert response["error"]["code"] == INVALID_REQUEST

	@pytest.mark.asyncio
	async def test_ping_before_initialize(self):
		response = await make_server().handle_line(request("p", "ping"))
		assert response == {"jsonrpc": "2.0", "id": "p", "result": {}}

	@pytest.mark.asyncio
	async def test_second_initialize_rejected(self):
		server = await initialized(make_server())
		response = await server.handle_line(request(2, "initialize", INITIALIZE))
		assert response["error"]["code"] == INVALID_REQUEST

	@pytest.mark.asyncio
	async def test_unsupported_version(self):
		server = make_server()
		response = await server.handle_line(request(1, "initialize", {"protocolVersion": "2020-01-01"}))
		assert response["error"]["code"] == INVALID_PARAMS
		assert server.state is ServerState.UNINITIALIZED

	@pytest.mark.asyncio
	async def test_shutdown_request_answered(self):
		server = await initialized(make_server())
		response = await server.handle_line(request(9, "shutdown"))
		assert response == {"jsonrpc": "2.0", "id": 9, "result": {}}
		assert server.state is ServerState.SHUTTING_DOWN


class TestDispatch:
	"""Routing and error mapping."""

	@pytest.mark.asyncio
	async def test_unknown_tool_keeps_server_alive(self):
		server = await initialized(make_server())

		response = await server.handle_line(request(5, "tools/call", {"name": "nonexistent_tool", "arguments": {}}))
		assert response["id"] == 5
		assert response["error"]["code"] == UNKNOWN_TOOL

		assert (await server.handle_line(request(6, "ping")))["result"] == {}
		assert server.state is ServerState.READY

	@pytest.mark.asyncio
	async def test_id_echoed_verbatim(self):
		server = await initialized(make_server())
		for request_id in ("abc-123", 0, 2 ** 40):
			response = await server.handle_line(request(request_id, "ping"))
			assert response["id"] == request_id

	@pytest.mark.asyncio
	async def test_notifications_get_no_response(self):
		server = await initialized(make_server())
		assert await server.handle_line(notification("notifications/cancelled")) is None
		assert await server.handle_line(notification("tools/list")) is None

	@pytest.mark.asyncio
	async def test_parse_error_has_null_id(self):
		response = await make_server().handle_line("{oops")
		assert response["id"] is None
		assert response["error"]["code"] == PARSE_ERROR

	@pytest.mark.asyncio
	async def test_invalid_request_has_null_id(self):
		response = await make_server().handle_line('{"jsonrpc":"2.0","id":4}')
		assert response["id"] is None
		assert response["error"]["code"] == INVALID_REQUEST

	@pytest.mark.asyncio
	async def test_unknown_method(self):
		server = await initialized(make_server())
		response = await server.handle_line(request(1, "sampling/createMessage"))
		assert response["error"]["code"] == METHOD_NOT_FOUND

	@pytest.mark.asyncio
	async def test_tool_call(self):
		server = await initialized(make_server())
		response = await server.handle_line(request(1, "tools/call", {"name": "echo", "arguments": {"q": "x"}}))
		content = response["result"]["content"]
		assert content == [{"type": "text", "text": "echo:echo:{'q': 'x'}"}]
		assert "isError" not in response["result"] or response["result"]["isError"] is False

	@pytest.mark.asyncio
	async def test_tool_call_without_name(self):
		server = await initialized(make_server())
		response = await server.handle_line(request(1, "tools/call", {"arguments": {}}))
		assert response["error"]["code"] == INVALID_PARAMS

	@pytest.mark.asyncio
	async def test_invalid_query_maps_to_invalid_argument(self):
		server = await initialized(make_server())
		response = await server.handle_line(request(1, "tools/call", {"name": "bad_query"}))
		assert response["error"]["code"] == INVALID_ARGUMENT

	@pytest.mark.asyncio
	async def test_unexpected_error_is_internal(self):
		server = await initialized(make_server())
		response = await server.handle_line(request(1, "tools/call", {"name": "explode"}))
		assert response["error"]["code"] == INTERNAL_ERROR
		assert server.state is ServerState.READY

	@pytest.mark.asyncio
	async def test_resources_read_and_missing(self):
		server = await initialized(make_server())
		response = await server.handle_line(request(1, "resources/read", {"uri": "alpha://item/1"}))
		assert response["result"]["contents"][0]["text"] == "body of alpha://item/1"

		missing = await server.handle_line(request(2, "resources/read", {"uri": "alpha://item/99"}))
		assert missing["error"]["code"] == RESOURCE_NOT_FOUND

		no_uri = await server.handle_line(request(3, "resources/read", {}))
		assert no_uri["error"]["code"] == INVALID_PARAMS

	@pytest.mark.asyncio
	async def test_prompts(self):
		server = await initialized(make_server())
		listed = await server.handle_line(request(1, "prompts/list"))
		assert [p["name"] for p in listed["result"]["prompts"]] == ["greet"]

		got = await server.handle_line(request(2, "prompts/get", {"name": "greet", "arguments": {"who": "Swift"}}))
		assert got["result"]["messages"][0]["content"]["text"] == "Hello Swift"

		unknown = await server.handle_line(request(3, "prompts/get", {"name": "nope"}))
		assert unknown["error"]["code"] == UNKNOWN_PROMPT


class TestComposites:
	"""Merging providers."""

	@pytest.mark.asyncio
	async def test_duplicate_tool_first_wins(self, caplog):
		first = EchoTools("first", ("search",))
		second = EchoTools("second", ("search", "extra"))
		tools = CompositeToolProvider()
		tools.register(first)
		tools.register(second)

		with caplog.at_level(logging.WARNING):
			listed = await tools.list_tools()
		assert [t.name for t in listed.tools] == ["search", "extra"]
		assert "Duplicate tool 'search'" in caplog.text

		result = await tools.call_tool("search", None)
		assert result.content[0].text == "first:search:{}"
		assert second.calls == []

	@pytest.mark.asyncio
	async def test_unknown_tool(self):
		tools = CompositeToolProvider()
		tools.register(EchoTools())
		with pytest.raises(UnknownToolError):
			await tools.call_tool("missing", {})

	@pytest.mark.asyncio
	async def test_resource_paging_across_providers(self):
		resources = CompositeResourceProvider()
		resources.register(PagedResources("alpha", 3))
		resources.register(PagedResources("beta", 1))

		uris = []
		cursor = None
		pages = 0
		while True:
			page = await resources.list_resources(cursor)
			uris.extend(str(r.uri) for r in page.resources)
			pages += 1
			cursor = page.next_cursor
			if not cursor:
				break

		assert pages == 3
		assert len(uris) == 4
		assert uris[-1].startswith("beta")

	@pytest.mark.asyncio
	async def test_malformed_cursor(self):
		from cupertino.errors import InvalidArgumentError

		resources = CompositeResourceProvider()
		resources.register(PagedResources("alpha", 3))
		with pytest.raises(InvalidArgumentError):
			await resources.list_resources("x:1")
		with pytest.raises(InvalidArgumentError):
			await resources.list_resources("5:")

	@pytest.mark.asyncio
	async def test_read_falls_through_providers(self):
		resources = CompositeResourceProvider()
		resources.register(PagedResources("alpha", 1))
		resources.register(PagedResources("beta", 1))
		result = await resources.read_resource("beta://item/0")
		assert result.contents[0].text == "body of beta://item/0"


class TestServeLoop:
	"""The serve loop over in-memory transport streams."""

	async def _serve(self, server: ProtocolServer, lines: list[str]) -> list[dict]:
		# Decode the way the stdio transport does
		send_incoming, incoming = anyio.create_memory_object_stream(len(lines) + 1)
		outgoing, receive_outgoing = anyio.create_memory_object_stream(100)
		for line in lines:
			try:
				await send_incoming.send(SessionMessage(jsonrpc_message_adapter.validate_json(line)))
			except ValidationError as e:
				await send_incoming.send(e)
		send_incoming.close()

		await asyncio.wait_for(server.serve(incoming, outgoing), timeout=5)
		incoming.close()
		outgoing.close()

		sent: list[dict] = []
		async with receive_outgoing:
			async for session_message in receive_outgoing:
				line = session_message.message.model_dump_json(by_alias=True, exclude_unset=True)
				sent.append(json.loads(line))
		return sent

	@pytest.mark.asyncio
	async def test_session(self):
		server = make_server()
		sent = await self._serve(server, [
			request(1, "initialize", INITIALIZE),
			notification("notifications/initialized"),
			request(2, "tools/list"),
			request(3, "tools/call", {"name": "nonexistent_tool"}),
			request(4, "ping"),
		])

		by_id = {message["id"]: message for message in sent}
		assert set(by_id) == {1, 2, 3, 4}
		assert [t["name"] for t in by_id[2]["result"]["tools"]] == ["echo", "slow", "bad_query", "explode"]
		assert by_id[3]["error"]["code"] == UNKNOWN_TOOL
		assert by_id[4]["result"] == {}
		assert server.state is ServerState.TERMINATED

	@pytest.mark.asyncio
	async def test_shutdown_waits_for_in_flight(self):
		server = make_server()
		sent = await self._serve(server, [
			request(1, "initialize", INITIALIZE),
			request(2, "tools/call", {"name": "slow"}),
			notification("notifications/shutdown"),
			request(3, "ping"),
		])

		ids = [message["id"] for message in sent]
		assert 2 in ids
		# Nothing is read after shutdown
		assert 3 not in ids
		assert server.state is ServerState.TERMINATED

	@pytest.mark.asyncio
	async def test_garbage_line_then_recovery(self):
		sent = await self._serve(make_server(), [
			"this is not json",
			'{"jsonrpc":"2.0","id":4}',
			request(1, "initialize", INITIALIZE),
		])
		assert sent[0] == {"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "Parse error: invalid JSON"}}
		assert sent[1]["id"] is None
		assert sent[1]["error"]["code"] == INVALID_REQUEST
		assert sent[2]["id"] == 1

	@pytest.mark.asyncio
	async def test_client_responses_are_ignored(self):
		sent = await self._serve(make_server(), [
			'{"jsonrpc":"2.0","id":99,"result":{}}',
			request(1, "ping"),
		])
		assert sent == [{"jsonrpc": "2.0", "id": 1, "result": {}}]

	@pytest.mark.asyncio
	async def test_unsendable_result_becomes_internal_error(self):
		server = make_server()

		async def broken_ping(params: dict) -> list:
			return ["not", "an", "object"]

		with patch.dict(server._handlers, {"ping": broken_ping}):
			sent = await self._serve(server, [
				request(1, "initialize", INITIALIZE),
				request(2, "ping"),
				request(3, "tools/list"),
			])

		by_id = {message["id"]: message for message in sent}
		assert by_id[2]["error"]["code"] == INTERNAL_ERROR
		assert "result" not in by_id[2]
		assert "tools" in by_id[3]["result"]
