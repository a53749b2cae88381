"""Markdown rendering for tool results."""

from typing import Optional

from ..models import SampleFile, SampleProject, SearchFilters, SearchResult, Source
from ..search.samples import FileSearchResult

SOURCE_NAMES = {
	Source.APPLE_DOCS.value: "Apple Documentation",
	Source.APPLE_ARCHIVE.value: "Apple Archive",
	Source.HIG.value: "Human Interface Guidelines",
	Source.SWIFT_EVOLUTION.value: "Swift Evolution",
	Source.SWIFT_ORG.value: "Swift.org",
	Source.SWIFT_BOOK.value: "The Swift Programming Language",
	Source.PACKAGES.value: "Swift Packages",
	Source.SAMPLES.value: "Sample Code",
}

NO_RESULTS = "_No results found. Try broader terms or remove filters._"
TIP_TRY_ARCHIVE = "_Tip: older guides may be in the archive; retry with `include_archive: true`._"
TIP_READ_DOCUMENT = "Use `read_document` with a result URI to read the full document."

# Sample code language names used for fenced code blocks
_FENCE_LANGUAGES = {
	"h": "objc",
	"m": "objc",
	"mm": "objc",
	"hpp": "cpp",
	"plist": "xml",
	"md": "markdown",
	"strings": "properties",
}


def source_name(source: str) -> str:
	return SOURCE_NAMES.get(source, source)


def format_bytes(size: int) -> str:
	value = float(size)
	for unit in ("B", "KB", "MB"):
		if value < 1024:
			return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
		value /= 1024
	return f"{value:.1f} GB"


def fence_language(extension: str) -> str:
	extension = extension.lower()
	return _FENCE_LANGUAGES.get(extension, extension)


def _filter_lines(filters: SearchFilters) -> list[str]:
	lines = []
	if filters.framework:
		lines.append(f"_Filtered to framework: **{filters.framework}**_")
	if filters.language:
		lines.append(f"_Filtered to language: **{filters.language}**_")
	for platform, version in filters.version_filters().items():
		lines.append(f"_Filtered to {platform.display_name}: **{version}+**_")
	if filters.include_archive:
		lines.append("_Including archived documentation_")
	return lines


def format_teasers(teasers: dict[str, list[str]]) -> str:
	"""Titles from other sources, grouped by source, each with a hint to search it."""
	sections = []
	for source, titles in teasers.items():
		if not titles:
			continue
		lines = [f"**Also in {source_name(source)}:**"]
		lines.extend(f"- {title}" for title in titles)
		lines.append("")
		lines.append(f"_Use `source: {source}`_")
		sections.append("\n".join(lines))
	if not sections:
		return ""
	return "\n\n---\n\n" + "\n\n".join(sections) + "\n"


def format_search_results(
	query: str,
	results: list[SearchResult],
	filters: SearchFilters,
	teasers: Optional[dict[str, list[str]]] = None,
	empty_message: str = NO_RESULTS,
) -> str:
	"""Render ranked document hits followed by teasers from other sources."""
	searched = filters.source or "all"
	lines = [f'# Search Results for "{query}"', "", f"_Source: **{searched}**_", ""]
	for line in _filter_lines(filters):
		lines += [line, ""]

	count = len(results)
	lines += [f"Found **{count}** result{'' if count == 1 else 's'}:", ""]

	if not results:
		lines.append(empty_message)
	else:
		for position, result in enumerate(results, 1):
			lines += [f"## {position}. {result.title}", ""]
			if result.framework:
				lines.append(f"- **Framework:** `{result.framework}`")
			lines.append(f"- **URI:** `{result.uri}`")
			if filters.source is None:
				lines.append(f"- **Source:** {source_name(result.source)}")
			if result.kind != "unknown":
				lines.append(f"- **Kind:** {result.kind}")
			if result.availability:
				lines.append(f"- **Availability:** {', '.join(str(a) for a in result.availability)}")
			lines.append(f"- **Score:** {result.rank:.2f}")
			lines.append(f"- **Words:** {result.word_count}")
			lines += ["", result.summary, ""]
			if position < count:
				lines += ["---", ""]
		lines.append(TIP_READ_DOCUMENT)

	return "\n".join(lines).rstrip() + "\n" + format_teasers(teasers or {})


def format_frameworks(frameworks: dict[str, int], total_documents: int) -> str:
	lines = [
		"# Available Frameworks",
		"",
		f"Total documents: **{total_documents}**",
		f"Frameworks: **{len(frameworks)}**",
		"",
	]
	if not frameworks:
		lines.append("_No frameworks indexed. Run `cupertino sync` to build the index._")
		return "\n".join(lines) + "\n"

	lines += ["| Framework | Documents |", "|-----------|----------:|"]
	lines.extend(f"| `{name}` | {count} |" for name, count in frameworks.items())
	lines += ["", "Use `search` with `framework` to search within one framework."]
	return "\n".join(lines) + "\n"


def format_sample_search(
	query: str,
	projects: list[SampleProject],
	files: list[FileSearchResult],
	framework: Optional[str] = None,
) -> str:
	lines = [f'# Sample Code Results for "{query}"', "", f"_Source: **{Source.SAMPLES.value}**_", ""]
	if framework:
		lines += [f"_Filtered to framework: **{framework}**_", ""]

	if not projects and not files:
		lines.append("_No sample code found matching your query._")
		return "\n".join(lines) + "\n"

	if projects:
		lines += [f"## Projects ({len(projects)})", ""]
		for project in projects:
			lines.append(f"### {project.title}")
			lines.append(f"- **Project ID:** `{project.id}`")
			if project.frameworks:
				lines.append(f"- **Frameworks:** {', '.join(project.frameworks)}")
			lines.append(f"- **Files:** {project.file_count}")
			if project.description:
				lines += ["", project.description]
			lines.append("")

	if files:
		lines += [f"## Files ({len(files)})", ""]
		for hit in files:
			lines.append(f"- `{hit.project_id}/{hit.path}`: {hit.snippet.strip()}")
		lines.append("")

	lines.append("Use `read_sample` with a project ID or `read_sample_file` to view source code.")
	return "\n".join(lines) + "\n"


def format_sample_list(
	projects: list[SampleProject],
	total_projects: int,
	total_files: int,
	framework: Optional[str] = None,
) -> str:
	lines = [
		"# Indexed Sample Code Projects",
		"",
		f"Total projects: **{total_projects}**",
		f"Total files: **{total_files}**",
		"",
	]
	if framework:
		lines += [f"_Filtered to framework: **{framework}**_", ""]

	if not projects:
		lines.append("_No projects found. Run `cupertino sync` to index sample code._")
		return "\n".join(lines) + "\n"

	lines += ["| Project | Frameworks | Files |", "|---------|------------|------:|"]
	for project in projects:
		lines.append(f"| `{project.id}` | {', '.join(project.frameworks)} | {project.file_count} |")
	lines += ["", "Use `search` with `source: samples` to find projects by keyword."]
	return "\n".join(lines) + "\n"


def format_sample_project(project: SampleProject, files: list[SampleFile], max_files: int = 30) -> str:
	lines = [f"# {project.title}", "", f"**Project ID:** `{project.id}`", ""]
	if project.description:
		lines += ["## Description", "", project.description, ""]

	lines += ["## Metadata", ""]
	lines.append(f"- **Frameworks:** {', '.join(project.frameworks) or 'unknown'}")
	lines.append(f"- **Files:** {project.file_count}")
	lines.append(f"- **Size:** {format_bytes(project.total_size)}")
	if project.web_url:
		lines.append(f"- **Apple Developer:** {project.web_url}")
	lines.append("")

	if project.readme:
		lines += ["## README", "", project.readme.rstrip(), ""]

	if files:
		lines += [f"## Files ({len(files)} total)", ""]
		lines.extend(f"- `{f.path}`" for f in files[:max_files])
		if len(files) > max_files:
			lines.append(f"- _... and {len(files) - max_files} more files_")
		lines += ["", "Use `read_sample_file` with project_id and file_path to view source code."]

	return "\n".join(lines).rstrip() + "\n"


def format_sample_file(file: SampleFile) -> str:
	content = file.content if file.content.endswith("\n") else file.content + "\n"
	return (
		f"# {file.filename}\n\n"
		f"**Project:** `{file.project_id}`\n"
		f"**Path:** `{file.path}`\n"
		f"**Size:** {format_bytes(file.size)}\n\n"
		f"```{fence_language(file.extension)}\n"
		f"{content}"
		"```\n"
	)
