from unittest.mock import Mock

import pytest

from atm import Bank
from security import PasswordHasher, RateLimiter
from store import InMemoryAccountRepository
from suggestions import SuggestionEngine


class FakeClock:
    """Monotonic clock in seconds that only moves when told to"""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance_ms(self, millis):
        self.now += millis / 1000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hasher():
    # Lowest bcrypt cost keeps the suite fast
    return PasswordHasher(rounds=4)


@pytest.fixture
def model_client():
    client = Mock()
    client.recommend.return_value = None
    return client


@pytest.fixture
def bank(hasher, model_client):
    return Bank(
        InMemoryAccountRepository(),
        hasher=hasher,
        rate_limiter=RateLimiter(max_attempts=3, lockout_minutes=15),
        engine=SuggestionEngine(model_client),
        starting_balance=1000,
    )


@pytest.fixture
def alice(bank):
    ok, _, user = bank.signup(
        "alice", "secret1", "Alice Liddell", "alice@example.com", "9876543210", "1234",
        address="1 Rabbit Hole",
    )
    assert ok
    return user
