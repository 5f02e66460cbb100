import pytest

from infrastructure.persistence.repositories.memory import InMemoryRateStore
from rate_factories import FakeExchangeClient, make_rate


@pytest.fixture
def store():
    return InMemoryRateStore()


@pytest.fixture
def exchange():
    return FakeExchangeClient(rate=make_rate(value="43000.5"))
