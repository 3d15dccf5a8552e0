"""
Shared fixtures for the dyntrace tests.
"""

import sys
from pathlib import Path

import pytest

# main.py lives at the repository root, next to the dyntrace package.
sys.path.insert(0, str(Path(__file__).parent.parent))

from dyntrace import logger  # noqa: E402


@pytest.fixture(autouse=True)
def restore_log_level():
    """Undo log level changes made by set_log_level or the CLI's --log-level."""
    level = logger.logger.level
    yield
    logger.logger.setLevel(level)
