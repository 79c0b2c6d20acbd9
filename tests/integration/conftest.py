"""Shared fixtures for integration tests."""

from __future__ import annotations

import io
import json
from typing import Any

import pytest

from shipwright.manager import Manager


def log_entries(stream: io.StringIO) -> list[dict[str, Any]]:
    """Parse the JSON lines a manager wrote to ``stream``."""
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def manager(installation: Any, log_stream: io.StringIO) -> Manager:
    """Manager over the 1.2.0 installation with 1.3.0 published."""
    return Manager(installation.config, source=installation.source(), log_output=log_stream)
