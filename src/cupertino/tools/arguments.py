"""Typed access to tool-call arguments."""

from typing import Any, Optional

from ..errors import InvalidArgumentError, MissingArgumentError
from ..models import DocumentFormat, Platform


class ArgumentExtractor:
	"""
	Reads and validates the named arguments of one tool call.

	Usage:
		args = ArgumentExtractor(arguments)
		query = args.require_str("query")
		limit = args.limit(default=10, maximum=50)
	"""

	def __init__(self, arguments: Optional[dict[str, Any]]):
		self.arguments = arguments or {}

	def _get(self, key: str) -> Any:
		return self.arguments.get(key)

	def require_str(self, key: str) -> str:
		value = self._get(key)
		if value is None or (isinstance(value, str) and not value.strip()):
			raise MissingArgumentError(key)
		if not isinstance(value, str):
			raise InvalidArgumentError(key, f"expected a string, got {type(value).__name__}")
		return value.strip()

	def optional_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
		value = self._get(key)
		if value is None:
			return default
		if not isinstance(value, str):
			raise InvalidArgumentError(key, f"expected a string, got {type(value).__name__}")
		value = value.strip()
		return value or default

	def optional_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
		value = self._get(key)
		if value is None:
			return default
		# Some clients send numbers as strings
		if isinstance(value, str) and value.strip().lstrip("-").isdigit():
			return int(value)
		if isinstance(value, bool) or not isinstance(value, (int, float)):
			raise InvalidArgumentError(key, f"expected an integer, got {value!r}")
		if isinstance(value, float) and not value.is_integer():
			raise InvalidArgumentError(key, f"expected an integer, got {value!r}")
		return int(value)

	def optional_bool(self, key: str, default: bool = False) -> bool:
		value = self._get(key)
		if value is None:
			return default
		if isinstance(value, bool):
			return value
		if isinstance(value, str) and value.lower() in ("true", "false"):
			return value.lower() == "true"
		raise InvalidArgumentError(key, f"expected a boolean, got {value!r}")

	# -- specialized -----------------------------------------------------

	def limit(self, default: int, maximum: int, key: str = "limit") -> int:
		"""Requested result count clamped to 1..maximum."""
		value = self.optional_int(key, default)
		return max(1, min(value, maximum))

	def include_archive(self) -> bool:
		return self.optional_bool("include_archive", False)

	def format(self, default: DocumentFormat = DocumentFormat.JSON) -> DocumentFormat:
		value = self.optional_str("format")
		if value is None:
			return default
		try:
			return DocumentFormat(value.lower())
		except ValueError:
			allowed = ", ".join(f.value for f in DocumentFormat)
			raise InvalidArgumentError("format", f"must be one of: {allowed}") from None

	def min_versions(self) -> dict[str, Optional[str]]:
		"""min_<platform> arguments keyed by their SearchFilters field names."""
		return {platform.column: self.optional_str(platform.column) for platform in Platform}

	def platform(self, key: str = "platform") -> Platform:
		value = self.require_str(key).lower()
		try:
			return Platform(value)
		except ValueError:
			allowed = ", ".join(p.value for p in Platform)
			raise InvalidArgumentError(key, f"must be one of: {allowed}") from None
