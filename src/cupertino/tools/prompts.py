"""Prompt templates for common documentation questions."""

from typing import Optional

from mcp.types import (
	GetPromptResult,
	ListPromptsResult,
	Prompt,
	PromptArgument,
	PromptMessage,
	TextContent,
)

from ..errors import UnknownPromptError
from ..server.providers import PromptProvider
from .arguments import ArgumentExtractor

PROMPTS = [
	Prompt(
		name="explain_api",
		description="Explain an Apple API using the indexed documentation.",
		arguments=[
			PromptArgument(name="symbol", description="Type, method or property name", required=True),
			PromptArgument(name="framework", description="Framework the symbol belongs to", required=False),
		],
	),
	Prompt(
		name="check_availability",
		description="Check whether an API can be used on a given OS version.",
		arguments=[
			PromptArgument(name="symbol", description="Type, method or property name", required=True),
			PromptArgument(name="platform", description="ios, macos, tvos, watchos or visionos", required=True),
			PromptArgument(name="version", description="Deployment target, e.g. 15.0", required=True),
		],
	),
]


def _user_message(text: str) -> PromptMessage:
	return PromptMessage(role="user", content=TextContent(type="text", text=text))


class DocsPromptProvider(PromptProvider):
	"""Prompts that steer the client toward the search and read tools."""

	async def list_prompts(self, cursor: Optional[str] = None) -> ListPromptsResult:
		return ListPromptsResult(prompts=list(PROMPTS))

	async def get_prompt(self, name: str, arguments: Optional[dict[str, str]]) -> GetPromptResult:
		args = ArgumentExtractor(arguments)

		if name == "explain_api":
			symbol = args.require_str("symbol")
			framework = args.optional_str("framework")
			scope = f" in {framework}" if framework else ""
			filter_hint = f' and framework "{framework.lower()}"' if framework else ""
			return GetPromptResult(
				description=f"Explain {symbol}{scope}",
				messages=[_user_message(
					f"Explain the Apple API `{symbol}`{scope}.\n\n"
					f"1. Call the `search` tool with query \"{symbol}\"{filter_hint}.\n"
					"2. Read the best match with `read_document` (format: markdown).\n"
					"3. Summarize what it does, its declaration, availability and a short usage example."
				)],
			)

		if name == "check_availability":
			symbol = args.require_str("symbol")
			platform = args.platform()
			version = args.require_str("version")
			return GetPromptResult(
				description=f"Is {symbol} available on {platform.display_name} {version}?",
				messages=[_user_message(
					f"Can `{symbol}` be used when deploying to {platform.display_name} {version}?\n\n"
					f"Call the `search` tool with query \"{symbol}\" and `{platform.column}: \"{version}\"`. "
					"A result means the API is available at that version; check the Availability line "
					"of each hit. If nothing is returned, search again without the version filter to "
					"find the minimum version it requires."
				)],
			)

		raise UnknownPromptError(name)
