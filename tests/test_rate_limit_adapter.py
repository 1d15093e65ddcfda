"""Unit tests for the in-memory sliding-window rate limiter."""

import asyncio
from unittest.mock import Mock

import pytest

from ai_governance.adapters.rate_limit.base import (
    EmergencyBrakeConfig,
    IdentityClass,
    RateLimiterConfig,
    RateLimitRule,
    RejectionReason,
    WindowType,
    parse_rule_sets,
)
from ai_governance.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from ai_governance.core.errors import ValidationAppError


def _limiter(clock, **overrides) -> InMemorySlidingWindowRateLimiter:
    """Limiter with the brake and throttling off unless a test turns them on."""
    options = {
        "emergency_brake": EmergencyBrakeConfig(enabled=False),
        "adaptive_throttling": False,
    }
    options.update(overrides)
    return InMemorySlidingWindowRateLimiter(RateLimiterConfig(**options), clock=clock)


def _admit(limiter: InMemorySlidingWindowRateLimiter, identity: str, identity_class="guest", tokens=100):
    """Check then record, the way callers use the limiter."""
    result = limiter.check_rate_limit(identity, identity_class, tokens)
    if result.allowed:
        limiter.record_request(identity, tokens, identity_class)
    return result


class TestSlidingWindow:
    def test_guest_allows_two_per_minute_then_blocks(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock)

        assert _admit(limiter, "u").allowed is True
        clock.return_value = 1010.0
        assert _admit(limiter, "u").allowed is True

        clock.return_value = 1020.0
        blocked = limiter.check_rate_limit("u", "guest")
        assert blocked.allowed is False
        assert blocked.reason_code is RejectionReason.WINDOW_QUOTA
        assert "minute" in blocked.reason
        assert blocked.remaining_requests == 0
        # Oldest entry (t=1000) leaves the window at t=1060
        assert blocked.reset_time == pytest.approx(1060.0)
        assert blocked.retry_after == pytest.approx(40.0)

    def test_window_slides_instead_of_resetting(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock)
        _admit(limiter, "u")
        clock.return_value = 1030.0
        _admit(limiter, "u")

        clock.return_value = 1059.0
        assert limiter.check_rate_limit("u", "guest").allowed is False

        # Entry at exactly now - 60 is outside the window
        clock.return_value = 1060.0
        assert limiter.check_rate_limit("u", "guest").allowed is True

    def test_hour_window_applies_after_minute_window_clears(self) -> None:
        clock = Mock(return_value=0.0)
        rules = parse_rule_sets({"guest": {"minute": 2, "hour": 3, "day": 25}})
        limiter = _limiter(clock, rules=rules)

        for ts in (0.0, 100.0, 200.0):
            clock.return_value = ts
            assert _admit(limiter, "u").allowed is True

        clock.return_value = 300.0
        blocked = limiter.check_rate_limit("u", "guest")
        assert blocked.allowed is False
        assert "hour" in blocked.reason
        assert blocked.reset_time == pytest.approx(3600.0)

    def test_identities_are_isolated(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock)
        _admit(limiter, "a")
        _admit(limiter, "a")

        assert limiter.check_rate_limit("a", "guest").allowed is False
        assert limiter.check_rate_limit("b", "guest").allowed is True

    def test_allowed_result_reports_tightest_rule(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock)

        fresh = limiter.check_rate_limit("u", "free")
        assert fresh.allowed is True
        assert fresh.remaining_requests == 5
        assert fresh.reset_time == pytest.approx(1060.0)

        _admit(limiter, "u", "free")
        assert limiter.check_rate_limit("u", "free").remaining_requests == 4

    def test_zero_limit_never_frees_up(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock, rules={IdentityClass.FREE: (RateLimitRule(WindowType.MINUTE, 0),)})

        blocked = limiter.check_rate_limit("u", "free")
        assert blocked.allowed is False
        assert blocked.retry_after is None

    def test_check_is_a_pure_read(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock)

        for _ in range(10):
            assert limiter.check_rate_limit("u", "guest").allowed is True

        assert limiter.tracked_identities() == 0
        assert limiter.get_usage_metrics("u").total_requests == 0

    def test_unknown_class_falls_back_to_default(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock)

        result = limiter.check_rate_limit("u", "platinum")

        assert result.allowed is True
        assert result.remaining_requests == 5  # free: 5 per minute

    def test_invalid_arguments(self) -> None:
        limiter = _limiter(Mock(return_value=0.0))

        with pytest.raises(ValueError):
            limiter.check_rate_limit("")
        with pytest.raises(ValueError):
            limiter.check_rate_limit("u", estimated_tokens=-1)
        with pytest.raises(ValueError):
            limiter.record_request("u", -5)

    def test_negative_rule_limit_rejected(self) -> None:
        with pytest.raises(ValueError):
            RateLimitRule(WindowType.MINUTE, -1)


class TestEmergencyBrake:
    def _brake_limiter(self, clock, **brake) -> InMemorySlidingWindowRateLimiter:
        return _limiter(
            clock,
            cost_per_token=0.01,
            emergency_brake=EmergencyBrakeConfig(**{"max_hourly_cost": 1.0, "max_daily_cost": 5.0, **brake}),
            rules=parse_rule_sets({"free": {"minute": 1000, "hour": 1000, "day": 1000}}),
        )

    def test_hourly_ceiling_blocks_every_identity(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = self._brake_limiter(clock)
        limiter.record_request("heavy-user", 90)  # 0.90 spent

        clock.return_value = 1600.0
        blocked = limiter.check_rate_limit("someone-else", "free", estimated_tokens=20)

        assert blocked.allowed is False
        assert blocked.reason_code is RejectionReason.HOURLY_COST
        assert blocked.reset_time == pytest.approx(1000.0 + 3600)
        assert blocked.retry_after == pytest.approx(3000.0)

    def test_request_that_fits_exactly_is_allowed(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = self._brake_limiter(clock)
        limiter.record_request("u", 90)

        assert limiter.check_rate_limit("u", "free", estimated_tokens=10).allowed is True

    def test_request_larger_than_ceiling_has_no_retry_time(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = self._brake_limiter(clock)

        blocked = limiter.check_rate_limit("u", "free", estimated_tokens=200)

        assert blocked.allowed is False
        assert blocked.retry_after is None
        assert blocked.reset_time == pytest.approx(1000.0)

    def test_daily_ceiling(self) -> None:
        clock = Mock(return_value=0.0)
        limiter = self._brake_limiter(clock, max_hourly_cost=100.0, max_daily_cost=1.0)
        limiter.record_request("u", 60)
        clock.return_value = 7200.0
        limiter.record_request("u", 30)

        clock.return_value = 10_800.0
        blocked = limiter.check_rate_limit("u", "free", estimated_tokens=20)

        assert blocked.reason_code is RejectionReason.DAILY_COST
        # Releasing the first entry (0.60) is enough
        assert blocked.reset_time == pytest.approx(86_400.0)

    def test_brake_is_monotonic_in_spend(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = self._brake_limiter(clock)
        limiter.record_request("u", 95)
        assert limiter.check_rate_limit("u", "free", estimated_tokens=10).allowed is False

        limiter.record_request("other", 1)
        assert limiter.check_rate_limit("u", "free", estimated_tokens=10).allowed is False

    def test_brake_precedes_identity_quota(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(
            clock,
            cost_per_token=0.01,
            emergency_brake=EmergencyBrakeConfig(max_hourly_cost=0.5),
        )
        _admit(limiter, "u", tokens=10)
        _admit(limiter, "u", tokens=10)
        limiter.record_request("other", 40)

        blocked = limiter.check_rate_limit("u", "guest", estimated_tokens=10)
        assert blocked.reason_code is RejectionReason.HOURLY_COST


class TestAdaptiveThrottling:
    def _throttled_limiter(self, clock) -> InMemorySlidingWindowRateLimiter:
        return _limiter(
            clock,
            adaptive_throttling=True,
            assumed_capacity_per_minute=10,
            rules=parse_rule_sets(
                {
                    "guest": {"minute": 10, "hour": 100, "day": 100},
                    "premium": {"minute": 10, "hour": 100, "day": 100},
                    "free": {"minute": 10, "hour": 100, "day": 100},
                }
            ),
        )

    def test_guest_limit_shrinks_under_load(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = self._throttled_limiter(clock)
        for idx in range(8):
            limiter.record_request(f"background-{idx}", 10)

        # load 0.8 is not above the threshold yet; each guest call adds load
        assert _admit(limiter, "guest-user", "guest").allowed is True
        assert _admit(limiter, "guest-user", "guest").allowed is True
        assert _admit(limiter, "guest-user", "guest").allowed is True

        blocked = limiter.check_rate_limit("guest-user", "guest")
        assert blocked.allowed is False
        assert blocked.reason_code is RejectionReason.ADAPTIVE_THROTTLE
        assert blocked.retry_after is not None and blocked.retry_after > 0

        # Premium keeps 70% of its limit: 3 requests are still fine
        for _ in range(3):
            limiter.record_request("premium-user", 10, "premium")
        assert limiter.check_rate_limit("premium-user", "premium").allowed is True

    def test_no_throttling_at_low_load(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = self._throttled_limiter(clock)

        for _ in range(5):
            assert _admit(limiter, "guest-user", "guest").allowed is True

    def test_throttle_lifts_when_load_subsides(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = self._throttled_limiter(clock)
        for idx in range(9):
            limiter.record_request(f"background-{idx}", 10)
        clock.return_value = 1030.0
        for _ in range(3):
            limiter.record_request("guest-user", 10, "guest")

        assert limiter.check_rate_limit("guest-user", "guest").allowed is False

        # Background entries leave the minute window at 1060
        clock.return_value = 1061.0
        assert limiter.check_rate_limit("guest-user", "guest").allowed is True


class TestUsageAndHousekeeping:
    def test_usage_metrics_per_identity_and_global(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock, cost_per_token=0.001)
        limiter.record_request("a", 100)
        clock.return_value = 1100.0
        limiter.record_request("a", 50)
        limiter.record_request("b", 10)

        metrics = limiter.get_usage_metrics("a")
        assert metrics.total_requests == 2
        assert metrics.total_tokens == 150
        assert metrics.estimated_cost == pytest.approx(0.15)
        assert metrics.current_window_usage[WindowType.MINUTE].requests == 1
        assert metrics.current_window_usage[WindowType.HOUR].requests == 2

        assert limiter.get_usage_metrics().total_requests == 3
        assert limiter.get_usage_metrics("unknown").total_requests == 0

    def test_cleanup_drops_cold_identities_and_is_idempotent(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock)
        limiter.record_request("cold", 10)
        clock.return_value = 1000.0 + 86_400 - 10
        limiter.record_request("warm", 10)

        clock.return_value = 1000.0 + 86_400 + 1
        limiter.cleanup()
        after_first = (limiter.tracked_identities(), limiter.get_usage_metrics().total_requests)
        limiter.cleanup()
        after_second = (limiter.tracked_identities(), limiter.get_usage_metrics().total_requests)

        assert after_first == (1, 1)
        assert after_second == after_first

    def test_cleanup_does_not_change_decisions(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock)
        _admit(limiter, "u")
        clock.return_value = 1070.0
        _admit(limiter, "u")

        clock.return_value = 1080.0
        before = limiter.check_rate_limit("u", "guest")
        limiter.cleanup()
        after = limiter.check_rate_limit("u", "guest")

        assert before == after

    def test_disabled_limiter_admits_and_records_nothing(self) -> None:
        limiter = _limiter(Mock(return_value=1000.0), enabled=False)

        for _ in range(10):
            result = _admit(limiter, "u")
            assert result.allowed is True
            assert result.remaining_requests is None

        assert limiter.get_usage_metrics("u").total_requests == 0

    def test_reset_single_identity(self) -> None:
        limiter = _limiter(Mock(return_value=1000.0))
        _admit(limiter, "a")
        _admit(limiter, "b")

        limiter.reset("a")

        assert limiter.get_usage_metrics("a").total_requests == 0
        assert limiter.get_usage_metrics("b").total_requests == 1

    @pytest.mark.asyncio
    async def test_periodic_cleanup_start_stop(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = InMemorySlidingWindowRateLimiter(clock=clock, cleanup_interval_seconds=0.01)
        limiter.record_request("u", 10)
        clock.return_value = 1000.0 + 2 * 86_400

        limiter.start_cleanup()
        await asyncio.sleep(0.05)
        await limiter.stop_cleanup()

        assert limiter.tracked_identities() == 0


class TestUpdateConfig:
    def test_rules_update_applies_to_next_check(self) -> None:
        limiter = _limiter(Mock(return_value=1000.0))
        _admit(limiter, "u")

        limiter.update_config(rules={"guest": {"minute": 1}})

        assert limiter.check_rate_limit("u", "guest").allowed is False
        # Other classes keep their rule-sets
        assert limiter.config.rules_for(IdentityClass.PREMIUM)[0].max_requests == 15

    def test_partial_emergency_brake_update_is_merged(self) -> None:
        limiter = InMemorySlidingWindowRateLimiter()

        limiter.update_config(emergency_brake={"max_hourly_cost": 2.5})

        assert limiter.config.emergency_brake.max_hourly_cost == 2.5
        assert limiter.config.emergency_brake.max_daily_cost == 50.0

    def test_unknown_field_is_rejected(self) -> None:
        limiter = InMemorySlidingWindowRateLimiter()

        with pytest.raises(ValidationAppError) as exc_info:
            limiter.update_config(burst=10)

        assert exc_info.value.code == "rate_limit_unknown_config_field"

    @pytest.mark.parametrize(
        "changes",
        [
            {"rules": {"guest": {"fortnight": 3}}},
            {"rules": {"guest": {"minute": -1}}},
            {"throttle_multipliers": {"guest": 1.5}},
            {"default_identity_class": "vip"},
            {"assumed_capacity_per_minute": 0},
            {"emergency_brake": {"max_weekly_cost": 1}},
        ],
    )
    def test_invalid_values_are_rejected(self, changes: dict) -> None:
        limiter = InMemorySlidingWindowRateLimiter()
        before = limiter.config

        with pytest.raises(ValidationAppError) as exc_info:
            limiter.update_config(**changes)

        assert exc_info.value.code == "rate_limit_invalid_config"
        assert limiter.config == before
