from __future__ import annotations

import pytest


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    # The services are built on asyncio primitives; run anyio tests on asyncio only.
    return "asyncio"
