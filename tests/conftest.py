from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _reset_llm_settings_cache():
    from simgraph.core import llm_client

    llm_client._get_settings.cache_clear()
    yield
    llm_client._get_settings.cache_clear()
