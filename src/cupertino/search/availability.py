"""
Platform availability - numeric version comparison and platform gating.

Versions are compared component-wise as integers, so "10.13" sorts after
"10.2". Missing components count as 0 and so do malformed ones.
"""

import json
import logging
from typing import Any, Mapping, Optional

from ..models import Platform

logger = logging.getLogger(__name__)

# Names used by Apple's documentation JSON, lowercased
_PLATFORM_NAMES = {
	"ios": Platform.IOS,
	"ipados": Platform.IOS,
	"macos": Platform.MACOS,
	"tvos": Platform.TVOS,
	"watchos": Platform.WATCHOS,
	"visionos": Platform.VISIONOS,
}


def parse_version(version: str) -> tuple[int, ...]:
	"""Split a dotted version into integer components."""
	components = []
	for part in version.strip().split("."):
		try:
			components.append(int(part))
		except ValueError:
			components.append(0)
	return tuple(components)


def compare_versions(lhs: str, rhs: str) -> int:
	"""Return -1, 0 or 1 as lhs is lower than, equal to or higher than rhs."""
	left = parse_version(lhs)
	right = parse_version(rhs)
	width = max(len(left), len(right))
	left = left + (0,) * (width - len(left))
	right = right + (0,) * (width - len(right))
	if left < right:
		return -1
	if left > right:
		return 1
	return 0


def is_available(introduced: Optional[str], target: str) -> bool:
	"""True if an API introduced at `introduced` can be used on `target`."""
	if not introduced:
		return False
	return compare_versions(introduced, target) <= 0


def version_at_most(introduced: Optional[str], target: str) -> int:
	"""
	`is_available` as an SQLite function: 1 if `introduced` <= `target`.

	Registered on index connections so version filters run inside the query.
	A NULL `introduced` (platform not declared) never matches.
	"""
	return int(is_available(introduced, target))


def extract_availability(payload: Any) -> dict[Platform, str]:
	"""
	Read minimum versions from a documentation JSON payload.

	Accepts the decoded object or the raw JSON string. Entries marked
	unavailable are skipped; iOS and iPadOS collapse onto iOS, keeping the
	higher of the two.
	"""
	if isinstance(payload, str):
		try:
			payload = json.loads(payload)
		except json.JSONDecodeError:
			return {}
	if not isinstance(payload, dict):
		return {}

	entries = payload.get("availability")
	if not isinstance(entries, list):
		return {}

	result: dict[Platform, str] = {}
	for entry in entries:
		if not isinstance(entry, dict) or entry.get("unavailable") is True:
			continue
		name = entry.get("name")
		introduced = entry.get("introducedAt")
		if not isinstance(name, str) or not isinstance(introduced, str):
			continue

		platform = _PLATFORM_NAMES.get(name.lower())
		if platform is None:
			continue

		current = result.get(platform)
		if platform is Platform.IOS and current is not None:
			if compare_versions(introduced, current) > 0:
				result[platform] = introduced
		else:
			result[platform] = introduced

	return result


def format_availability(availability: Mapping[Platform, Optional[str]]) -> str:
	"""Render e.g. "iOS 13.0+, macOS 10.15+" in platform order."""
	parts = [
		f"{platform.display_name} {availability[platform]}+"
		for platform in Platform
		if availability.get(platform)
	]
	return ", ".join(parts)
