"""Tests for logging setup."""

import logging
import sys
from pathlib import Path

from cupertino.logging_config import setup_logging


def test_console_on_stderr(tmp_path: Path):
	"""stdout is reserved for the protocol stream."""
	logger = setup_logging(name="cupertino-test-console", level="DEBUG")
	try:
		assert logger.level == logging.DEBUG
		streams = [h.stream for h in logger.handlers if isinstance(h, logging.StreamHandler)]
		assert streams == [sys.stderr]
	finally:
		logger.handlers.clear()


def test_file_handler_and_no_duplicates(tmp_path: Path):
	name = "cupertino-test-file"
	logger = setup_logging(name=name, level="warning", log_dir=tmp_path / "logs")
	try:
		again = setup_logging(name=name, level="warning", log_dir=tmp_path / "logs")
		assert again is logger
		assert len(logger.handlers) == 2
		assert (tmp_path / "logs" / f"{name}.log").exists()
	finally:
		for handler in logger.handlers:
			handler.close()
		logger.handlers.clear()
