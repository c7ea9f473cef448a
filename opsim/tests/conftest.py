"""
Shared fixtures
"""

import pytest

from opsim.tests.helpers import make_system


@pytest.fixture
def system():
    return make_system()
