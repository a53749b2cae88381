"""
Ranking - deterministic re-ranking of full-text candidates.

SQLite's bm25() is negative and lower is better. The adjusted rank divides
it by the product of three multipliers, so a multiplier below 1.0 pushes a
hit up and one above 1.0 pushes it down:

	adjusted = bm25 / (kind_multiplier * source_multiplier * title_boost)
"""

import re
from typing import Optional

from ..models import Source

CORE_KINDS = frozenset({"protocol", "class", "struct", "framework"})
MEMBER_KINDS = frozenset({"property", "method"})

KIND_CORE = 0.5
KIND_MEMBER = 2.0

SOURCE_RELEASE_NOTES = 2.5
SOURCE_ARCHIVE = 1.5
SOURCE_EVOLUTION = 1.3
SOURCE_SWIFT_DOCS = 0.9

BOOST_EXACT_TITLE = 0.05
BOOST_FIRST_WORD = 0.15
BOOST_ALL_TERMS = 0.3
BOOST_ANY_TERM = 0.6
PENALTY_NESTED_TYPE = 2.0
BOOST_REQUESTED_KIND = 0.4
BOOST_SHORT_QUERY_CORE_TYPE = 0.5
PENALTY_VERBOSE_TITLE = 1.3

# Kind inference thresholds
MEMBER_URI_DEPTH = 3
RICH_DOC_WORDS = 500
VERBOSE_TITLE_CHARS = 50

_OPERATOR_PREFIXES = ("+", "-", "*", "/", "==", "!=", "<", ">")
_KIND_QUERY_WORDS = ("protocol", "class", "struct")
_SOURCE_PREFIXES = sorted(Source.values(), key=len, reverse=True)


def uri_depth(uri: str) -> int:
	"""Number of path segments after the scheme, ignoring "documentation"."""
	_, _, path = uri.partition("://")
	return len([p for p in path.split("/") if p and p != "documentation"])


def infer_kind(uri: str, title: str, word_count: int, kind: Optional[str] = None) -> str:
	"""Resolve an unknown kind from title shape, URI depth and document size."""
	if kind and kind != "unknown":
		return kind

	stripped = title.strip()
	first = stripped[:1]

	if "(_:" in title or ("(" in title and ":)" in title):
		return "method"
	if stripped.startswith(_OPERATOR_PREFIXES):
		return "method"
	if len(title.split()) == 1 and first.islower() and "(" not in title:
		return "property"

	lowered = title.lower()
	if lowered.endswith("protocol") or lowered.endswith("delegate"):
		return "protocol"

	depth = uri_depth(uri)
	if uri.startswith(f"{Source.APPLE_DOCS.value}://"):
		if depth < MEMBER_URI_DEPTH:
			if first.isupper() and "(" not in title:
				return "struct"
		elif first.islower():
			return "property"

	if word_count > RICH_DOC_WORDS and depth < MEMBER_URI_DEPTH and first.isupper():
		return "struct"

	return "unknown"


def kind_multiplier(kind: str) -> float:
	if kind in CORE_KINDS:
		return KIND_CORE
	if kind in MEMBER_KINDS:
		return KIND_MEMBER
	return 1.0


def source_multiplier(source: str, uri: str, kind: str = "unknown") -> float:
	if kind == "release-notes" or "release-notes" in uri:
		return SOURCE_RELEASE_NOTES
	if source == Source.APPLE_ARCHIVE.value:
		return SOURCE_ARCHIVE
	if source == Source.SWIFT_EVOLUTION.value:
		return SOURCE_EVOLUTION
	if source in (Source.SWIFT_BOOK.value, Source.SWIFT_ORG.value):
		return SOURCE_SWIFT_DOCS
	return 1.0


def query_words(query: str) -> list[str]:
	"""Lowercased query words longer than one character."""
	return [w for w in query.lower().split() if len(w) > 1]


def title_boost(query: str, title: str, kind: str, framework: Optional[str] = None) -> float:
	"""Combined multiplier from how well the title answers the query."""
	words = query_words(query)
	query_lower = query.lower()
	title_lower = title.lower()
	title_words = title_lower.split()

	boost = 1.0
	if len(words) <= 3 and title_lower == " ".join(words):
		boost *= BOOST_EXACT_TITLE
	elif title_words and words and title_words[0] == words[0]:
		boost *= BOOST_FIRST_WORD
	elif all(w in title_lower for w in words):
		boost *= BOOST_ALL_TERMS
	elif any(w in title_lower for w in words):
		boost *= BOOST_ANY_TERM

	# "Text.Scale" should rank below "Text" for the query "text"
	if "." not in query_lower and "." in title_lower:
		boost *= PENALTY_NESTED_TYPE

	for word in _KIND_QUERY_WORDS:
		if word in query_lower and kind == word:
			boost *= BOOST_REQUESTED_KIND
			break

	if len(words) == 1 and framework == "swiftui" and kind in ("protocol", "class", "struct"):
		boost *= BOOST_SHORT_QUERY_CORE_TYPE

	if len(words) <= 2 and len(title) > VERBOSE_TITLE_CHARS:
		boost *= PENALTY_VERBOSE_TITLE

	return boost


def adjusted_rank(
	bm25: float,
	*,
	query: str,
	uri: str,
	source: str,
	title: str,
	kind: str,
	framework: Optional[str] = None,
) -> float:
	"""Apply kind, source and title multipliers to a raw bm25 score."""
	divisor = (
		kind_multiplier(kind)
		* source_multiplier(source, uri, kind)
		* title_boost(query, title, kind, framework)
	)
	return bm25 / divisor


def extract_source_prefix(query: str) -> tuple[Optional[str], str]:
	"""
	Split a leading source name off the query.

	"swift-evolution actors" -> ("swift-evolution", "actors")
	"""
	lowered = query.lower()
	for prefix in _SOURCE_PREFIXES:
		if not lowered.startswith(prefix):
			continue
		rest = query[len(prefix):]
		if not rest or rest[0].isspace():
			return prefix, rest.strip()
	return None, query


def sanitize_fts_query(query: str) -> str:
	"""Quote each term so FTS5 never reads operators or column filters."""
	terms = [t for t in re.split(r"[\s\-]+", query) if t]
	return " ".join('"' + t.replace('"', '""') + '"' for t in terms)
