"""Pytest configuration ensuring project root is importable.

Adds repository root to sys.path explicitly to avoid interpreter/path quirks.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolate_config_env():  # noqa: D401
    """Ensure global config/env/metrics side effects do not leak.

    - Clear aggregated config cache between tests
    - Restore RELAY_CONFIG_DIR to original value
    - Reset metrics counters
    """
    from relay import metrics  # local import
    from relay.config import clear_config_cache

    prev = os.environ.get("RELAY_CONFIG_DIR")
    clear_config_cache()
    metrics.reset_for_tests()
    metrics.configure(True)
    try:
        yield
    finally:
        clear_config_cache()
        metrics.configure(True)
        if prev is None:
            os.environ.pop("RELAY_CONFIG_DIR", None)
        else:
            os.environ["RELAY_CONFIG_DIR"] = prev


@pytest.fixture
def dispatcher():
    from relay import create_event_dispatcher

    return create_event_dispatcher()
