from __future__ import annotations

from typing import Iterator

import pytest

from levelup.config import get_settings
from levelup.db.session import dispose_engine


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    dispose_engine()
