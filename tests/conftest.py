from __future__ import annotations

import pytest

from tests.helpers import FakeSiteverify


@pytest.fixture
def siteverify() -> FakeSiteverify:
    return FakeSiteverify()
