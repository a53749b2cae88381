"""Full-text document and sample indexes."""

from .index import SCHEMA_VERSION, SearchIndex
from .samples import FileSearchResult, SampleIndex

__all__ = ["SCHEMA_VERSION", "SearchIndex", "SampleIndex", "FileSearchResult"]
