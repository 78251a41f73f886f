"""Route tests call handlers many times per minute; throttling is off here
and exercised on its own in tests/core/test_ratelimit.py.
"""

from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def _no_throttling():
    with patch("core.ratelimit.limiter.enabled", False):
        yield
