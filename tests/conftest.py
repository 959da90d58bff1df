"""
Test configuration for adaptor tests.
"""

from __future__ import annotations

import pytest

from btcadaptor.config import AdaptorConfig, NetworkType
from tests.fakes import FakeLedger


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def config() -> AdaptorConfig:
    return AdaptorConfig(network=NetworkType.MAINNET, min_confirmations=1)
