import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from smcforge.strategy.smc import strategy_config


@pytest.fixture(autouse=True)
def restore_levers():
    """Every test starts and ends on the default lever set."""
    strategy_config.reset_levers()
    yield
    strategy_config.reset_levers()
