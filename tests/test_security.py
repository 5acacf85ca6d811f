import threading
from datetime import datetime, timedelta

import pytest

from security import InputValidator, RateLimiter


def test_hash_and_verify(hasher):
    hashed = hasher.hash_password("1234")
    assert hashed != "1234"
    assert hasher.verify_password("1234", hashed)
    assert not hasher.verify_password("4321", hashed)


def test_verify_rejects_malformed_or_empty_hash(hasher):
    assert not hasher.verify_password("1234", "plaintext")
    assert not hasher.verify_password("1234", "")
    assert not hasher.verify_password("", hasher.hash_password("1234"))


class SteppingClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 9, 0)

    def __call__(self):
        return self.now


def test_rate_limiter_locks_out_and_recovers():
    clock = SteppingClock()
    limiter = RateLimiter(max_attempts=3, lockout_minutes=15, clock=clock)

    for _ in range(2):
        limiter.record_attempt("alice")
    assert limiter.is_locked_out("alice") == (False, None)
    assert limiter.attempts_left("alice") == 1

    limiter.record_attempt("alice")
    locked, message = limiter.is_locked_out("alice")
    assert locked
    assert "15 minutes" in message

    clock.now += timedelta(minutes=16)
    assert limiter.is_locked_out("alice") == (False, None)
    assert limiter.attempts_left("alice") == 3


def test_rate_limiter_reset():
    limiter = RateLimiter(max_attempts=1)
    limiter.record_attempt("bob")
    assert limiter.is_locked_out("bob")[0]
    limiter.reset_attempts("bob")
    assert not limiter.is_locked_out("bob")[0]


def test_rate_limiter_counts_every_concurrent_attempt():
    limiter = RateLimiter(max_attempts=1000, lockout_minutes=15)
    barrier = threading.Barrier(8)

    def hammer():
        barrier.wait()
        for _ in range(50):
            limiter.record_attempt("alice")
            limiter.attempts_left("alice")

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert limiter.attempts_left("alice") == 600


@pytest.mark.parametrize("pin,ok", [("1234", True), ("123", False), ("12a4", False), ("", False), ("12345", False)])
def test_validate_pin(pin, ok):
    assert (InputValidator.validate_pin(pin) is None) is ok


@pytest.mark.parametrize("amount,ok", [(100, True), ("250.5", True), (0, False), (-5, False), ("abc", False), (float("inf"), False)])
def test_validate_amount(amount, ok):
    assert (InputValidator.validate_amount(amount) is None) is ok


def test_validate_signup_fields():
    assert InputValidator.validate_username("al") is not None
    assert InputValidator.validate_username("alice_01") is None
    assert InputValidator.validate_username("alice smith") is not None
    assert InputValidator.validate_password("12345") is not None
    assert InputValidator.validate_email("alice@example") is not None
    assert InputValidator.validate_email("alice@example.com") is None
    assert InputValidator.validate_phone("+91 98765-43210") is None
    assert InputValidator.validate_phone("12ab") is not None


def test_sanitize_text():
    assert InputValidator.sanitize_text(' <b>"Alice"</b> ') == "bAlice/b"
