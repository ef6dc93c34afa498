from backoffice.core.rate_limiter import (
    ADMIN_PIN_POLICY,
    STAFF_PIN_POLICY,
    InMemoryRateLimitStore,
    PinRateLimiter,
    RateLimitDecision,
    RateLimitPolicy,
)


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _limiter(policy=STAFF_PIN_POLICY, store=None, clock=None):
    return PinRateLimiter(policy, store or InMemoryRateLimitStore(), clock=clock or FakeClock())


def test_fresh_key_is_allowed_with_full_budget():
    decision = _limiter().check("biz-12")

    assert decision.allowed
    assert decision.remaining_attempts == STAFF_PIN_POLICY.max_attempts
    assert decision.minutes_remaining == 0


def test_max_attempts_failures_lock_the_key():
    limiter = _limiter()

    first = limiter.record_failure("biz-12")
    second = limiter.record_failure("biz-12")
    third = limiter.record_failure("biz-12")

    assert first.allowed and first.remaining_attempts == 2
    assert second.allowed and second.remaining_attempts == 1
    assert not third.allowed
    assert third.remaining_attempts == 0
    assert not limiter.check("biz-12").allowed


def test_lockout_reports_minutes_remaining():
    clock = FakeClock()
    limiter = _limiter(clock=clock)
    for _ in range(3):
        limiter.record_failure("biz-12")

    clock.advance(60)
    decision = limiter.check("biz-12")

    assert not decision.allowed
    assert decision.minutes_remaining == 14


def test_lockout_expires_and_counter_resets():
    clock = FakeClock()
    limiter = _limiter(clock=clock)
    for _ in range(3):
        limiter.record_failure("biz-12")

    clock.advance(STAFF_PIN_POLICY.lockout_seconds)
    decision = limiter.check("biz-12")

    assert decision.allowed
    assert decision.remaining_attempts == STAFF_PIN_POLICY.max_attempts
    assert limiter.record_failure("biz-12").remaining_attempts == 2


def test_old_failures_fall_out_of_the_window():
    clock = FakeClock()
    limiter = _limiter(clock=clock)
    limiter.record_failure("biz-12")
    limiter.record_failure("biz-12")

    clock.advance(STAFF_PIN_POLICY.lockout_seconds + 1)

    assert limiter.record_failure("biz-12").remaining_attempts == 2


def test_clear_forgets_failures():
    limiter = _limiter()
    limiter.record_failure("biz-12")
    limiter.record_failure("biz-12")

    limiter.clear("biz-12")

    assert limiter.check("biz-12").remaining_attempts == 3


def test_scopes_do_not_share_counters():
    store = InMemoryRateLimitStore()
    clock = FakeClock()
    staff = PinRateLimiter(STAFF_PIN_POLICY, store, clock=clock)
    admin = PinRateLimiter(ADMIN_PIN_POLICY, store, clock=clock)
    for _ in range(3):
        staff.record_failure("same-id")

    assert not staff.check("same-id").allowed
    assert admin.check("same-id").allowed


def test_cleanup_expired_only_removes_stale_records_of_its_scope():
    store = InMemoryRateLimitStore()
    clock = FakeClock()
    policy = RateLimitPolicy(scope="short", max_attempts=2, lockout_seconds=60)
    limiter = PinRateLimiter(policy, store, clock=clock)
    other = PinRateLimiter(STAFF_PIN_POLICY, store, clock=clock)
    limiter.record_failure("old")
    other.record_failure("old")

    clock.advance(60 + 3600 + 1)
    limiter.record_failure("fresh")

    assert limiter.cleanup_expired() == 1
    assert store.get("short:old") is None
    assert store.get("short:fresh") is not None
    assert store.get("staff-pin:old") is not None


def test_decision_as_dict():
    decision = RateLimitDecision(allowed=False, remaining_attempts=0, lockout_seconds_remaining=61)

    assert decision.as_dict() == {
        "allowed": False,
        "remaining_attempts": 0,
        "lockout_minutes_remaining": 2,
    }


def test_database_store_shares_lockout_between_limiters(db):
    from backoffice.core.rate_limiter import DatabaseRateLimitStore
    from backoffice.models.pin_attempt import PinAttempt

    clock = FakeClock()
    store = DatabaseRateLimitStore()
    first = PinRateLimiter(STAFF_PIN_POLICY, store, clock=clock)
    second = PinRateLimiter(STAFF_PIN_POLICY, store, clock=clock)

    first.record_failure("biz-12")
    first.record_failure("biz-12")
    decision = second.record_failure("biz-12")

    assert not decision.allowed
    assert not first.check("biz-12").allowed
    assert db.query(PinAttempt).filter(PinAttempt.key == "staff-pin:biz-12").one().attempts == 3

    clock.advance(STAFF_PIN_POLICY.lockout_seconds + 4000)
    assert first.cleanup_expired() == 1
    assert db.query(PinAttempt).count() == 0
