import logging

from fastapi import status
from sqlalchemy import inspect

from core.errors import ServiceError, http_error, status_for_message
from core.log_config import configure_logging
from core.rate_limit import InMemoryRateLimiter
from core.tokens import hash_secret, is_valid_pin, verify_secret
from db import Base


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_rate_limiter_blocks_after_max_attempts():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(max_attempts=3, window_seconds=60, clock=clock)

    assert [limiter.hit("1.2.3.4") for _ in range(4)] == [True, True, True, False]
    assert limiter.remaining("1.2.3.4") == 0
    # Other clients keep their own budget.
    assert limiter.hit("5.6.7.8") is True


def test_rate_limiter_window_expires():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(max_attempts=2, window_seconds=60, clock=clock)
    limiter.hit("ip")
    limiter.hit("ip")
    assert limiter.hit("ip") is False

    clock.now = 61
    assert limiter.remaining("ip") == 2
    assert limiter.hit("ip") is True
    assert limiter.remaining("ip") == 1


def test_rate_limiter_reset():
    limiter = InMemoryRateLimiter(max_attempts=1, window_seconds=60)
    limiter.hit("a")
    limiter.hit("b")
    limiter.reset("a")
    assert limiter.hit("a") is True
    assert limiter.hit("b") is False
    limiter.reset()
    assert limiter.hit("b") is True


def test_rate_limiter_forgets_expired_clients():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(max_attempts=2, window_seconds=60, clock=clock)
    for n in range(50):
        limiter.hit(f"10.0.0.{n}")
    assert len(limiter) == 50

    clock.now = 61
    limiter.hit("10.0.1.1")
    assert len(limiter) == 1
    assert limiter.remaining("10.0.0.1") == 2


def test_status_for_message():
    assert status_for_message("Supplier already exists") == status.HTTP_409_CONFLICT
    assert status_for_message("Product not found: 42") == status.HTTP_404_NOT_FOUND
    assert status_for_message("Insufficient inventory for product: Widget") == status.HTTP_400_BAD_REQUEST
    assert status_for_message("Only pending orders can be deleted") == status.HTTP_400_BAD_REQUEST
    assert status_for_message("Something exploded") == status.HTTP_500_INTERNAL_SERVER_ERROR


def test_http_error_keeps_message():
    exc = http_error(ServiceError("Order already fulfilled"))
    assert exc.status_code == status.HTTP_400_BAD_REQUEST
    assert exc.detail == "Order already fulfilled"


def test_pin_format_and_hashing():
    assert is_valid_pin("012345")
    assert not is_valid_pin("12345")
    assert not is_valid_pin("12a456")
    assert not is_valid_pin("")

    hashed = hash_secret("012345")
    assert hashed != "012345"
    assert verify_secret("012345", hashed)
    assert not verify_secret("543210", hashed)
    assert not verify_secret("", hashed)


def test_configure_logging_sets_root_level():
    configure_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    configure_logging("INFO")
    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


async def test_schema_builds_with_oauth_accounts_linked_to_users(engine):
    def _tables(sync_conn):
        return set(inspect(sync_conn).get_table_names())

    async with engine.connect() as conn:
        tables = await conn.run_sync(_tables)
    assert {"users", "oauth_accounts", "orders", "categories"} <= tables

    targets = {fk.target_fullname for fk in Base.metadata.tables["oauth_accounts"].c.user_id.foreign_keys}
    assert targets == {"users.id"}
