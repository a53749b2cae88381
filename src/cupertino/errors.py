"""Exception hierarchy shared by the store, the sync engine and the providers."""

# JSON-RPC domain error codes (implementation-defined range)
UNKNOWN_TOOL = -32001
RESOURCE_NOT_FOUND = -32002
MISSING_ARGUMENT = -32003
INVALID_ARGUMENT = -32004
UNKNOWN_PROMPT = -32005


class CupertinoError(Exception):
	"""Base class for all cupertino errors."""
	pass


# Storage


class StorageError(CupertinoError):
	"""Raised when the on-disk index cannot be read or written."""
	pass


class SchemaVersionError(StorageError):
	"""Raised when an index was built with a different schema version."""

	def __init__(self, found: int, expected: int, path: str = ""):
		self.found = found
		self.expected = expected
		self.path = path
		super().__init__(
			f"Index schema version {found} does not match supported version {expected}"
			f"{f' ({path})' if path else ''}. Delete the database and rebuild it."
		)


class InvalidQueryError(CupertinoError):
	"""Raised for queries the full-text engine cannot run (e.g. empty)."""
	pass


class InvalidDocumentError(CupertinoError):
	"""Raised when a document record is malformed and cannot be indexed."""

	def __init__(self, uri: str, reason: str):
		self.uri = uri
		self.reason = reason
		super().__init__(f"Invalid document {uri or '<no uri>'}: {reason}")


# Remote sync


class SyncStateError(CupertinoError):
	"""Raised when the sync checkpoint cannot be persisted or read."""
	pass


class SyncStateVersionError(SyncStateError):
	"""Raised when a checkpoint was written by an incompatible engine."""

	def __init__(self, found: int, expected: int):
		self.found = found
		self.expected = expected
		super().__init__(
			f"Sync state schema version {found} does not match expected {expected}"
		)


class SyncCancelledError(CupertinoError):
	"""Raised when a sync run stops because cancellation was requested."""
	pass


class FetchError(CupertinoError):
	"""Raised when a remote listing cannot be fetched after retries."""

	def __init__(self, path: str, status: str, detail: str = ""):
		self.path = path
		self.status = status
		super().__init__(f"Fetch failed for {path}: {status}{f' ({detail})' if detail else ''}")


# Tool / provider errors


class ToolError(CupertinoError):
	"""Base class for errors raised by tool, resource and prompt providers."""

	code = INVALID_ARGUMENT


class UnknownToolError(ToolError):
	code = UNKNOWN_TOOL

	def __init__(self, name: str):
		self.name = name
		super().__init__(f"Unknown tool: {name}")


class UnknownPromptError(ToolError):
	code = UNKNOWN_PROMPT

	def __init__(self, name: str):
		self.name = name
		super().__init__(f"Unknown prompt: {name}")


class MissingArgumentError(ToolError):
	code = MISSING_ARGUMENT

	def __init__(self, argument: str):
		self.argument = argument
		super().__init__(f"Missing required argument: {argument}")


class InvalidArgumentError(ToolError):
	code = INVALID_ARGUMENT

	def __init__(self, argument: str, reason: str):
		self.argument = argument
		self.reason = reason
		super().__init__(f"Invalid argument '{argument}': {reason}")


class ResourceNotFoundError(ToolError):
	code = RESOURCE_NOT_FOUND

	def __init__(self, uri: str):
		self.uri = uri
		super().__init__(f"Resource not found: {uri}")
