"""
Shared pytest configuration.

Puts the project root on sys.path so `import relaybot` and
`from tests.utils import ...` work from any test module.
"""

import sys
from pathlib import Path

import pytest


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


@pytest.fixture
def sqlite_engine():
    from tests.utils import make_sqlite_engine

    engine = make_sqlite_engine()
    try:
        yield engine
    finally:
        engine.dispose()
