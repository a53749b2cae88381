"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

APP_NAME = "cupertino"
APP_AUTHOR = "cupertino"

DEFAULT_REPOSITORY = "mihaelamj/cupertino-docs"
DEFAULT_BRANCH = "main"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	search_db_path: Path = field(init=False)
	samples_db_path: Path = field(init=False)
	sync_state_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Search tunables
	summary_max_length: int = 1500
	default_search_limit: int = 10
	max_search_limit: int = 50
	teaser_limit: int = 2

	# Remote sync
	repository: str = DEFAULT_REPOSITORY
	branch: str = DEFAULT_BRANCH
	fetch_concurrency: int = 50
	fetch_timeout: float = 1.0
	fetch_retries: int = 3
	fetch_retry_delay: float = 0.5
	github_token: str | None = None

	log_level: str = "INFO"

	def __post_init__(self) -> None:
		self.search_db_path = self.data_dir / "search.db"
		self.samples_db_path = self.data_dir / "samples.db"
		self.sync_state_path = self.data_dir / "sync-state.json"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


def _apply_env_overrides(config: Config) -> Config:
	"""Apply CUPERTINO_* environment variable overrides."""
	path_env = {
		"CUPERTINO_CONFIG_DIR": "config_dir",
		"CUPERTINO_DATA_DIR": "data_dir",
	}
	for env_key, attr in path_env.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(val))

	str_env = {
		"CUPERTINO_REPOSITORY": "repository",
		"CUPERTINO_BRANCH": "branch",
		"CUPERTINO_LOG_LEVEL": "log_level",
		"GITHUB_TOKEN": "github_token",
		"CUPERTINO_GITHUB_TOKEN": "github_token",
	}
	for env_key, attr in str_env.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, val)

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	path_fields = {"config_dir", "data_dir"}
	for key, val in data.items():
		if hasattr(config, key):
			if key in path_fields:
				setattr(config, key, Path(os.path.expanduser(val)))
			else:
				setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# config.toml lives in the config dir, which the environment may move
	config_dir = os.getenv("CUPERTINO_CONFIG_DIR")
	if config_dir:
		config.config_dir = Path(config_dir)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
