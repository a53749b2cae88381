"""
JSON-RPC 2.0 envelopes for the protocol server.

Framing and decoding belong to the mcp stdio transport, which yields
validated `JSONRPCMessage` models (or the exception raised while decoding a
line). This module turns those into `Message` records for dispatch and turns
response envelopes back into wire models. Requests carry an id that is
echoed verbatim in the response; notifications carry none and are never
answered.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from mcp.types import (
	INVALID_PARAMS,
	INVALID_REQUEST,
	PARSE_ERROR,
	JSONRPCError,
	JSONRPCNotification,
	JSONRPCRequest,
	JSONRPCResponse,
	jsonrpc_message_adapter,
)
from pydantic import ValidationError

JSONRPC_VERSION = "2.0"

# Newest first
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

RequestId = Union[str, int]


class ServerState(str, Enum):
	"""Lifecycle of a protocol session."""
	UNINITIALIZED = "uninitialized"
	READY = "ready"
	SHUTTING_DOWN = "shutting-down"
	TERMINATED = "terminated"


class JsonRpcError(Exception):
	"""A structured error destined for the client."""

	def __init__(self, code: int, message: str, data: Any = None):
		self.code = code
		self.message = message
		self.data = data
		super().__init__(message)

	def to_dict(self) -> dict:
		error = {"code": self.code, "message": self.message}
		if self.data is not None:
			error["data"] = self.data
		return error


@dataclass
class Message:
	"""A validated incoming request or notification."""
	method: str
	params: dict
	id: Optional[RequestId] = None
	is_notification: bool = False


def decode(line: str | bytes) -> Union[JSONRPCRequest, JSONRPCNotification, JSONRPCResponse, JSONRPCError]:
	"""
	Validate one raw JSON-RPC line into its wire model.

	Used where no transport does the decoding, such as the CLI and tests.

	Raises:
		JsonRpcError: PARSE_ERROR or INVALID_REQUEST, see `transport_error`
	"""
	try:
		return jsonrpc_message_adapter.validate_json(line)
	except ValidationError as e:
		raise transport_error(e) from e


def transport_error(exc: Exception) -> JsonRpcError:
	"""
	Map a decoding failure reported by the transport to a protocol error.

	Invalid JSON is a parse error; well-formed JSON that is not a JSON-RPC
	envelope is an invalid request.
	"""
	if isinstance(exc, ValidationError):
		if any(error["type"] == "json_invalid" for error in exc.errors()):
			return JsonRpcError(PARSE_ERROR, "Parse error: invalid JSON")
		return JsonRpcError(INVALID_REQUEST, "Invalid request: not a JSON-RPC 2.0 request or notification")
	return JsonRpcError(PARSE_ERROR, f"Parse error: {exc}")


def from_wire(message: Any) -> Optional[Message]:
	"""
	Message for a decoded request or notification.

	Returns:
		None for responses and errors, which a server never expects from its client
	"""
	if isinstance(message, JSONRPCRequest):
		return Message(method=message.method, params=message.params or {}, id=message.id)
	if isinstance(message, JSONRPCNotification):
		return Message(method=message.method, params=message.params or {}, is_notification=True)
	return None


def success(request_id: Optional[RequestId], result: dict) -> dict:
	return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def failure(request_id: Optional[RequestId], error: JsonRpcError) -> dict:
	return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_dict()}


def to_wire(response: dict) -> Union[JSONRPCResponse, JSONRPCError]:
	"""Wire model for a response envelope built by `success` or `failure`."""
	if "error" in response:
		return JSONRPCError.model_validate(response)
	return JSONRPCResponse.model_validate(response)


def negotiate_version(requested: Any) -> str:
	"""
	Pick the protocol version for a session.

	The client's version is echoed when supported; otherwise the newest
	supported version released before it is used.

	Raises:
		JsonRpcError: INVALID_PARAMS when no supported version qualifies.
	"""
	if not isinstance(requested, str) or not requested:
		raise JsonRpcError(INVALID_PARAMS, "protocolVersion is required")
	if requested in SUPPORTED_PROTOCOL_VERSIONS:
		return requested
	# Versions are ISO dates, so string order is release order
	for version in SUPPORTED_PROTOCOL_VERSIONS:
		if version < requested:
			return version
	raise JsonRpcError(
		INVALID_PARAMS,
		f"Unsupported protocol version: {requested}",
		data={"supported": list(SUPPORTED_PROTOCOL_VERSIONS)},
	)
