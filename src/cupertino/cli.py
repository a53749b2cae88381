"""CLI for cupertino: serve, sync, search, and doctor commands."""

import argparse
import asyncio
import platform
import signal
import sys
from importlib.metadata import version as pkg_version
from pathlib import Path

from . import __version__
from .config import Config, load_config
from .errors import CupertinoError, SchemaVersionError, SyncCancelledError
from .logging_config import setup_logging
from .models import Platform, SearchFilters
from .sync import GitHubFetcher, RemoteIndexer, RetryPolicy, SyncPhase, SyncProgress, SyncState


def _setup(config: Config) -> None:
	setup_logging(level=config.log_level, log_dir=config.log_dir)


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the protocol server (stdio transport)."""
	from .app import run_stdio

	config = load_config()
	_setup(config)
	asyncio.run(run_stdio(config))


def _print_progress(progress: SyncProgress) -> None:
	eta = progress.estimated_time_remaining
	eta_text = f", ~{eta / 60:.0f} min left" if eta is not None else ""
	print(
		f"\r  [{progress.overall_progress * 100:5.1f}%] {progress.phase.value} "
		f"{progress.framework or ''} {progress.file_index}/{progress.files_total}{eta_text}   ",
		end="",
		file=sys.stderr,
		flush=True,
	)


async def _sync(config: Config, args: argparse.Namespace) -> int:
	from .app import open_indexes

	phases = [SyncPhase(p) for p in args.phase] if args.phase else None
	index, samples = open_indexes(config)
	retry = RetryPolicy(attempts=config.fetch_retries, base_delay=config.fetch_retry_delay)
	fetcher = GitHubFetcher(
		config.repository,
		branch=config.branch,
		timeout=config.fetch_timeout,
		retry=retry,
		token=config.github_token,
	)
	try:
		await index.init()
		await samples.init()
		async with fetcher:
			indexer = RemoteIndexer(
				fetcher,
				index,
				config.sync_state_path,
				samples=samples,
				phases=phases,
				concurrency=config.fetch_concurrency,
				fetch_timeout=config.fetch_timeout,
				retry=retry,
				on_progress=None if args.quiet else _print_progress,
			)
			asyncio.get_running_loop().add_signal_handler(signal.SIGINT, indexer.cancel)
			try:
				stats = await indexer.run(fresh=args.fresh)
			except SyncCancelledError:
				print("\nSync cancelled. Run 'cupertino sync' again to resume.", file=sys.stderr)
				return 130
	finally:
		await samples.close()
		await index.close()

	print(file=sys.stderr)
	print(f"Indexed {stats.indexed} files in {stats.duration_seconds:.1f}s", end="")
	print(" (resumed)" if stats.resumed else "")
	if stats.skipped:
		print(f"Skipped {stats.skipped} files")
	if stats.failed:
		print(f"{len(stats.failed)} file(s) failed:")
		for path, reason in stats.failed[:20]:
			print(f"  - {path}: {reason}")
		if len(stats.failed) > 20:
			print(f"  ... and {len(stats.failed) - 20} more")
	return 0


def cmd_sync(args: argparse.Namespace) -> None:
	"""Download pre-crawled documentation and (re)build the indexes."""
	config = load_config()
	_setup(config)
	try:
		code = asyncio.run(_sync(config, args))
	except CupertinoError as e:
		print(f"Sync failed: {e}", file=sys.stderr)
		sys.exit(1)
	sys.exit(code)


async def _search(config: Config, args: argparse.Namespace) -> None:
	from .app import open_indexes

	index, _ = open_indexes(config)
	await index.init()
	try:
		filters = SearchFilters(
			source=args.source,
			framework=args.framework,
			language=args.language,
			include_archive=args.include_archive,
			limit=args.limit or config.default_search_limit,
			**{p.column: getattr(args, p.column) for p in Platform},
		)
		results = await index.search(" ".join(args.query), filters)
	finally:
		await index.close()

	if not results:
		print("No results.")
		return
	for position, result in enumerate(results, 1):
		availability = ", ".join(str(a) for a in result.availability)
		print(f"{position:2d}. {result.title}  [{result.source}] {result.uri}")
		if availability:
			print(f"    {availability}")


def cmd_search(args: argparse.Namespace) -> None:
	"""Search the local index from the command line."""
	config = load_config()
	_setup(config)
	try:
		asyncio.run(_search(config, args))
	except CupertinoError as e:
		print(f"Search failed: {e}", file=sys.stderr)
		sys.exit(1)


async def _check_index(path: Path, label: str) -> tuple[str, str | None]:
	"""Open an index read path. Returns (status, issue_or_none)."""
	from .search import SampleIndex, SearchIndex

	if not path.exists():
		return "not found (run 'cupertino sync')", f"{label} missing: {path}"

	store = SearchIndex(path) if label == "search index" else SampleIndex(path)
	try:
		await store.init()
		if isinstance(store, SearchIndex):
			count = await store.document_count()
			return f"OK ({count} documents)", None
		count = await store.project_count()
		return f"OK ({count} projects)", None
	except SchemaVersionError as e:
		return f"OUTDATED ({e.found} != {e.expected})", f"{label} needs a rebuild: cupertino sync --fresh"
	except CupertinoError as e:
		return f"UNREADABLE ({e})", f"{label} unreadable: {e}"
	finally:
		await store.close()


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation, configuration and indexes."""
	print("cupertino doctor")
	print(f"{'=' * 40}")

	config = load_config()
	issues: list[str] = []

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  cupertino:    {__version__}")
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	print("  Core deps:")
	for dep in ["mcp", "aiosqlite", "aiohttp", "platformdirs", "pydantic"]:
		try:
			print(f"    {dep:22s} {pkg_version(dep)}")
		except Exception:
			print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	print()

	print("  Paths:")
	print(f"    config dir:          {config.config_dir}")
	print(f"    data dir:            {config.data_dir}")
	toml_path = config.config_dir / "config.toml"
	print(f"    config.toml:         {'found' if toml_path.exists() else 'not found (optional)'}")
	print()

	print("  Indexes:")
	for path, label in ((config.search_db_path, "search index"), (config.samples_db_path, "sample index")):
		status, issue = asyncio.run(_check_index(path, label))
		print(f"    {label + ':':21s}{status}")
		if issue:
			issues.append(issue)
	if SyncState.exists(config.sync_state_path):
		print("    sync checkpoint:     present (run 'cupertino sync' to resume)")
	print()

	if issues:
		print(f"  {len(issues)} issue(s) found:")
		for issue in issues:
			print(f"    - {issue}")
		sys.exit(1)
	else:
		print("  All checks passed.")


def main() -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="cupertino",
		description="Apple developer documentation search server for AI agents",
	)
	parser.add_argument("--version", action="version", version=f"cupertino {__version__}")
	subparsers = parser.add_subparsers(dest="command")

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run the protocol server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# sync
	sync_parser = subparsers.add_parser("sync", help="Download documentation and build the indexes")
	sync_parser.add_argument("--fresh", action="store_true", help="Ignore any saved checkpoint")
	sync_parser.add_argument(
		"--phase",
		action="append",
		choices=[p.value for p in SyncPhase],
		help="Only run this phase (repeatable)",
	)
	sync_parser.add_argument("--quiet", action="store_true", help="No progress output")
	sync_parser.set_defaults(func=cmd_sync)

	# search
	search_parser = subparsers.add_parser("search", help="Search the local index")
	search_parser.add_argument("query", nargs="+", help="Search terms")
	search_parser.add_argument("--source", default=None, help="Restrict to one source")
	search_parser.add_argument("--framework", default=None, help="Restrict to one framework")
	search_parser.add_argument("--language", default=None, help="swift or objc")
	search_parser.add_argument("--limit", type=int, default=None, help="Maximum results")
	search_parser.add_argument("--include-archive", action="store_true", help="Include archived guides")
	for p in Platform:
		search_parser.add_argument(
			f"--min-{p.value}",
			dest=p.column,
			default=None,
			help=f"Only APIs available on {p.display_name} at this version",
		)
	search_parser.set_defaults(func=cmd_search)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
