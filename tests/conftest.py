from __future__ import annotations

import pytest

from support import ScriptedFetcher


@pytest.fixture
def fetcher() -> ScriptedFetcher:
    return ScriptedFetcher()
