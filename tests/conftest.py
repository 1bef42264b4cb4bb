import os

# Must be set before config.get_settings() is first called
os.environ.setdefault("LEDGER_ENV", "testing")

import pytest

from services import LedgerEngine


@pytest.fixture
def engine():
    """Fresh engine with no accounts and an empty ledger."""
    return LedgerEngine()
