"""Documentation resources - every indexed document readable by URI."""

import logging
from typing import Optional

from mcp.types import (
	ListResourcesResult,
	ListResourceTemplatesResult,
	ReadResourceResult,
	Resource,
	ResourceTemplate,
	TextResourceContents,
)
from pydantic import ValidationError

from ..errors import InvalidArgumentError
from ..models import Source
from ..search.index import SearchIndex
from ..server.providers import ResourceProvider
from .formatters import source_name

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MARKDOWN = "text/markdown"

TEMPLATES = [
	ResourceTemplate(
		uriTemplate="apple-docs://{framework}/{page}",
		name="apple-documentation",
		description="Apple documentation page, e.g. apple-docs://swiftui/view",
		mimeType=MARKDOWN,
	),
	ResourceTemplate(
		uriTemplate="swift-evolution://{proposal}",
		name="swift-evolution-proposal",
		description="Swift Evolution proposal, e.g. swift-evolution://SE-0296",
		mimeType=MARKDOWN,
	),
]


class DocsResourceProvider(ResourceProvider):
	"""
	Exposes the document index as markdown resources.

	Listing pages through documents ordered by URI; the cursor is the
	offset of the next page.
	"""

	def __init__(self, index: SearchIndex, page_size: int = PAGE_SIZE):
		self.index = index
		self.page_size = page_size

	async def list_resources(self, cursor: Optional[str] = None) -> ListResourcesResult:
		offset = 0
		if cursor:
			try:
				offset = int(cursor)
			except ValueError:
				raise InvalidArgumentError("cursor", f"malformed cursor {cursor!r}") from None
			if offset < 0:
				raise InvalidArgumentError("cursor", f"malformed cursor {cursor!r}")

		# One extra row tells whether another page exists
		rows = await self.index.list_documents(offset, self.page_size + 1)
		has_more = len(rows) > self.page_size

		resources = []
		for row in rows[: self.page_size]:
			try:
				resources.append(Resource(
					uri=row["uri"],
					name=row["title"],
					description=f"{source_name(row['source'])}"
					+ (f" / {row['framework']}" if row["framework"] else ""),
					mimeType=MARKDOWN,
				))
			except ValidationError:
				logger.warning(f"Skipping resource with unparseable URI: {row['uri']}")

		return ListResourcesResult(
			resources=resources,
			nextCursor=str(offset + self.page_size) if has_more else None,
		)

	async def list_resource_templates(self, cursor: Optional[str] = None) -> ListResourceTemplatesResult:
		return ListResourceTemplatesResult(resourceTemplates=list(TEMPLATES))

	async def read_resource(self, uri: str) -> Optional[ReadResourceResult]:
		scheme = uri.partition("://")[0]
		if scheme not in Source.values():
			return None

		# URL parsers lower-case the host part, so fall back to a case-insensitive match
		doc = await self.index.get_document(uri)
		if doc is None:
			doc = await self.index.get_document(uri.rstrip("/"), ignore_case=True)
		if doc is None:
			return None

		return ReadResourceResult(contents=[
			TextResourceContents(uri=doc.uri, mimeType=MARKDOWN, text=doc.content),
		])
