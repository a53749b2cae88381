"""
Transform fetched files into index records.

Each sync phase maps a remote directory onto a documentation source. Docs
files are either structured JSON pages (title, kind, abstract, declaration,
overview, sections, availability) or plain markdown.
"""

import json
import posixpath
from dataclasses import dataclass
from typing import Any, Optional

from ..models import Document, SampleFile, Source, should_index_sample_path
from ..search.availability import extract_availability
from .fetcher import RemoteFile
from .state import SyncPhase

DOC_EXTENSIONS = (".json", ".md")


@dataclass(frozen=True)
class PhaseSpec:
	"""Where a phase's content lives remotely and how it is indexed."""
	phase: SyncPhase
	directory: str
	source: Source
	# Items are subdirectories; otherwise the phase directory is the only item
	nested: bool = True
	source_type: str = "apple"

	@property
	def is_samples(self) -> bool:
		return self.phase is SyncPhase.SAMPLES


PHASES: dict[SyncPhase, PhaseSpec] = {
	SyncPhase.DOCS: PhaseSpec(SyncPhase.DOCS, "docs", Source.APPLE_DOCS),
	SyncPhase.EVOLUTION: PhaseSpec(
		SyncPhase.EVOLUTION, "swift-evolution", Source.SWIFT_EVOLUTION, nested=False, source_type="swift",
	),
	SyncPhase.ARCHIVE: PhaseSpec(SyncPhase.ARCHIVE, "archive", Source.APPLE_ARCHIVE),
	SyncPhase.SWIFT_ORG: PhaseSpec(
		SyncPhase.SWIFT_ORG, "swift-org", Source.SWIFT_ORG, nested=False, source_type="swift",
	),
	SyncPhase.PACKAGES: PhaseSpec(SyncPhase.PACKAGES, "packages", Source.PACKAGES, source_type="package"),
	SyncPhase.SAMPLES: PhaseSpec(SyncPhase.SAMPLES, "sample-code", Source.SAMPLES, source_type="sample"),
}


def is_doc_file(name: str) -> bool:
	return name.endswith(DOC_EXTENSIONS)


def base_name(filename: str) -> str:
	for ext in DOC_EXTENSIONS:
		if filename.endswith(ext):
			return filename[: -len(ext)]
	return filename


def build_uri(phase: SyncPhase, item: str, filename: str) -> str:
	name = base_name(filename)
	if phase is SyncPhase.DOCS:
		return f"{Source.APPLE_DOCS.value}://{item}/{name}"
	if phase is SyncPhase.EVOLUTION:
		return f"{Source.SWIFT_EVOLUTION.value}://{name}"
	if phase is SyncPhase.ARCHIVE:
		return f"{Source.APPLE_ARCHIVE.value}://{item}/{name}"
	if phase is SyncPhase.SWIFT_ORG:
		return f"{Source.SWIFT_ORG.value}://{name}"
	if phase is SyncPhase.PACKAGES:
		return f"{Source.PACKAGES.value}://{item}/{name}"
	return f"{Source.SAMPLES.value}://{item}/{filename}"


def _parse_json(content: str) -> Optional[dict]:
	try:
		payload = json.loads(content)
	except (json.JSONDecodeError, ValueError):
		return None
	return payload if isinstance(payload, dict) else None


def first_heading(content: str) -> Optional[str]:
	for line in content.splitlines():
		stripped = line.strip()
		if stripped.startswith("# "):
			return stripped[2:].strip() or None
	return None


def title_from_filename(filename: str) -> str:
	words = base_name(filename).replace("-", " ").split()
	return " ".join(w.capitalize() for w in words) or filename


def extract_title(content: str, filename: str, payload: Optional[dict] = None) -> str:
	"""JSON `title`, else the first "# " heading, else the file name."""
	if payload is None and filename.endswith(".json"):
		payload = _parse_json(content)
	if payload and isinstance(payload.get("title"), str) and payload["title"].strip():
		return payload["title"].strip()
	return first_heading(content) or title_from_filename(filename)


def render_page(payload: dict[str, Any]) -> str:
	"""Markdown text for a structured documentation page."""
	raw = payload.get("rawMarkdown")
	if isinstance(raw, str) and raw.strip():
		return raw

	lines = [f"# {payload.get('title', '')}".rstrip()]

	abstract = payload.get("abstract")
	if isinstance(abstract, str) and abstract:
		lines += ["", abstract]

	declaration = payload.get("declaration")
	if isinstance(declaration, dict) and declaration.get("code"):
		language = declaration.get("language") or "swift"
		lines += ["", f"```{language}", declaration["code"], "```"]

	overview = payload.get("overview")
	if isinstance(overview, str) and overview:
		lines += ["", "## Overview", "", overview]

	for section in payload.get("sections") or []:
		if not isinstance(section, dict) or not section.get("title"):
			continue
		lines += ["", f"## {section['title']}"]
		if section.get("content"):
			lines += ["", section["content"]]
		for item in section.get("items") or []:
			if isinstance(item, dict) and item.get("name"):
				description = item.get("description")
				lines.append(f"- {item['name']}" + (f": {description}" if description else ""))

	return "\n".join(lines) + "\n"


def to_document(spec: PhaseSpec, item: str, file: RemoteFile, content: str) -> Document:
	"""Build the Document for one fetched docs file."""
	payload = _parse_json(content) if file.name.endswith(".json") else None
	title = extract_title(content, file.name, payload)
	framework = item.lower() if spec.phase is SyncPhase.DOCS else None

	if payload is None:
		return Document(
			uri=build_uri(spec.phase, item, file.name),
			source=spec.source.value,
			title=title,
			content=content,
			framework=framework,
			file_path=file.path,
			source_type=spec.source_type,
		)

	kind = payload.get("kind")
	language = payload.get("language")
	availability = extract_availability(payload)

	return Document(
		uri=build_uri(spec.phase, item, file.name),
		source=spec.source.value,
		title=title,
		content=render_page(payload),
		framework=framework,
		language=language if isinstance(language, str) and language else None,
		file_path=file.path,
		source_type=spec.source_type,
		kind=kind.lower() if isinstance(kind, str) and kind else "unknown",
		json_data=content,
		**{platform.column: version for platform, version in availability.items()},
	)


def to_sample_file(project_id: str, project_root: str, file: RemoteFile, content: str) -> Optional[SampleFile]:
	"""SampleFile with a path relative to the project root, or None if not indexable."""
	relative = posixpath.relpath(file.path, project_root)
	if relative.startswith("..") or not should_index_sample_path(relative):
		return None
	return SampleFile(project_id=project_id, path=relative, content=content)
