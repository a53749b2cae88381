"""JSON-RPC protocol server and provider composites."""

from .protocol import SUPPORTED_PROTOCOL_VERSIONS, JsonRpcError, Message, ServerState, negotiate_version
from .providers import (
	CompositePromptProvider,
	CompositeResourceProvider,
	CompositeToolProvider,
	PromptProvider,
	ResourceProvider,
	ToolProvider,
)
from .server import ProtocolServer

__all__ = [
	"SUPPORTED_PROTOCOL_VERSIONS",
	"CompositePromptProvider",
	"CompositeResourceProvider",
	"CompositeToolProvider",
	"JsonRpcError",
	"Message",
	"PromptProvider",
	"ProtocolServer",
	"ResourceProvider",
	"ServerState",
	"ToolProvider",
	"negotiate_version",
]
