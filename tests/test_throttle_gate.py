"""
Throttle gate cooldown and atomicity tests.

Guards against:
1. Two callers both passing the gate for the same key
2. A denied refresh reporting no time until the next window
3. Cooldowns leaking between clients or data kinds
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from agency_dashboard.models.kinds import DataKind
from agency_dashboard.services.throttle_gate import GateDecision, ThrottleGate, describe_skip


# ---------------------------------------------------------------------------
# Cooldown arithmetic
# ---------------------------------------------------------------------------

def test_backlinks_48h_window(session_factory, clock):
    """T0 allowed, T0+1h denied with ~47h left, T0+49h allowed."""
    gate = ThrottleGate(session_factory, clock=clock)

    assert gate.try_acquire("C", DataKind.BACKLINKS).allowed

    clock.advance(hours=1)
    denied = gate.try_acquire("C", DataKind.BACKLINKS)
    assert not denied.allowed
    assert abs(denied.retry_after - timedelta(hours=47)) < timedelta(seconds=1)

    clock.advance(hours=48)
    assert gate.try_acquire("C", DataKind.BACKLINKS).allowed


def test_immediate_reacquire_is_denied_with_positive_retry_after(session_factory, clock):
    gate = ThrottleGate(session_factory, clock=clock)
    assert gate.try_acquire("C", DataKind.PAGE_METRICS).allowed

    decision = gate.try_acquire("C", DataKind.PAGE_METRICS)
    assert not decision.allowed
    assert decision.retry_after > timedelta(0)


def test_exact_cooldown_boundary_is_allowed(session_factory, clock):
    gate = ThrottleGate(session_factory, clock=clock)
    assert gate.try_acquire("C", DataKind.PAGE_METRICS).allowed
    clock.advance(hours=48)
    assert gate.try_acquire("C", DataKind.PAGE_METRICS).allowed


def test_analytics_uses_short_guard_window(session_factory, clock):
    gate = ThrottleGate(session_factory, clock=clock)
    assert gate.try_acquire("C", DataKind.ANALYTICS_SUMMARY).allowed

    clock.advance(minutes=5)
    assert not gate.try_acquire("C", DataKind.ANALYTICS_SUMMARY).allowed

    clock.advance(minutes=11)
    assert gate.try_acquire("C", DataKind.ANALYTICS_SUMMARY).allowed


def test_keys_are_independent(session_factory, clock):
    gate = ThrottleGate(session_factory, clock=clock)
    assert gate.try_acquire("C", DataKind.BACKLINKS).allowed
    assert gate.try_acquire("C", DataKind.PAGE_METRICS).allowed
    assert gate.try_acquire("D", DataKind.BACKLINKS).allowed
    assert not gate.try_acquire("C", DataKind.BACKLINKS).allowed


def test_custom_cooldowns_override_settings(session_factory, clock):
    gate = ThrottleGate(session_factory, clock=clock, cooldowns={
        DataKind.PAGE_METRICS: timedelta(minutes=1),
        DataKind.BACKLINKS: timedelta(minutes=1),
        DataKind.ANALYTICS_SUMMARY: timedelta(minutes=1),
    })
    assert gate.try_acquire("C", DataKind.PAGE_METRICS).allowed
    clock.advance(minutes=2)
    assert gate.try_acquire("C", DataKind.PAGE_METRICS).allowed


def test_reset_reopens_window(session_factory, clock):
    gate = ThrottleGate(session_factory, clock=clock)
    gate.try_acquire("C", DataKind.BACKLINKS)
    gate.try_acquire("C", DataKind.PAGE_METRICS)

    assert gate.reset("C", [DataKind.BACKLINKS]) == 1
    assert gate.try_acquire("C", DataKind.BACKLINKS).allowed
    assert not gate.try_acquire("C", DataKind.PAGE_METRICS).allowed


def test_last_refresh_at_is_stamped_at_acquisition(session_factory, clock):
    gate = ThrottleGate(session_factory, clock=clock)
    assert gate.last_refresh_at("C", DataKind.BACKLINKS) is None
    gate.try_acquire("C", DataKind.BACKLINKS)
    assert gate.last_refresh_at("C", DataKind.BACKLINKS) == clock.now


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

def test_concurrent_first_acquire_admits_exactly_one(session_factory, clock):
    """Racing inserts on a brand-new key: the loser falls back to the conditional update."""
    gate = ThrottleGate(session_factory, clock=clock)

    with ThreadPoolExecutor(max_workers=4) as pool:
        decisions = list(pool.map(lambda _: gate.try_acquire("C", DataKind.BACKLINKS), range(4)))

    assert sum(1 for d in decisions if d.allowed) == 1


def test_concurrent_acquire_after_expiry_admits_exactly_one(session_factory, clock):
    gate = ThrottleGate(session_factory, clock=clock)
    gate.try_acquire("C", DataKind.PAGE_METRICS)
    clock.advance(hours=49)

    with ThreadPoolExecutor(max_workers=4) as pool:
        decisions = list(pool.map(lambda _: gate.try_acquire("C", DataKind.PAGE_METRICS), range(4)))

    assert sum(1 for d in decisions if d.allowed) == 1


# ---------------------------------------------------------------------------
# Skip messages
# ---------------------------------------------------------------------------

def test_describe_skip_in_hours():
    message = describe_skip(GateDecision(allowed=False, retry_after=timedelta(hours=46, minutes=10)))
    assert message == "Using cached data; next refresh available in 47 hours"


def test_describe_skip_under_an_hour_uses_minutes():
    message = describe_skip(GateDecision(allowed=False, retry_after=timedelta(minutes=9, seconds=5)))
    assert message == "Using cached data; next refresh available in 10 minutes"


def test_describe_skip_allowed_is_none():
    assert describe_skip(GateDecision(allowed=True)) is None
