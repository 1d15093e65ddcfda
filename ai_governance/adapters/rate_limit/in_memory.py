"""In-memory sliding-window rate limiter with cost ceilings.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Usage is a log of timestamps, not a bucketed counter: membership in a window
  is decided at query time by ``timestamp > now - window``.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping

from ai_governance.adapters.rate_limit.base import (
    AbstractRateLimiter,
    EmergencyBrakeConfig,
    IdentityClass,
    RateLimiterConfig,
    RateLimitResult,
    RateLimitRule,
    RejectionReason,
    UsageEntry,
    UsageMetrics,
    WindowType,
    WindowUsage,
    parse_rule_sets,
    parse_throttle_multipliers,
)
from ai_governance.core.errors import ValidationAppError
from ai_governance.core.logging import hash_for_log
from ai_governance.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)


@dataclass
class _UsageLogs:
    minute: list[UsageEntry] = field(default_factory=list)
    hour: list[UsageEntry] = field(default_factory=list)
    day: list[UsageEntry] = field(default_factory=list)

    def entries(self, window: WindowType) -> list[UsageEntry]:
        return getattr(self, window.value)

    def append(self, entry: UsageEntry) -> None:
        for window in WindowType:
            self.entries(window).append(entry)

    def purge(self, now: float) -> int:
        removed = 0
        for window in WindowType:
            current = self.entries(window)
            kept = [entry for entry in current if entry.timestamp > now - window.seconds]
            removed += len(current) - len(kept)
            setattr(self, window.value, kept)
        return removed

    def is_empty(self) -> bool:
        return not (self.minute or self.hour or self.day)


class InMemorySlidingWindowRateLimiter(AbstractRateLimiter):
    """Multi-window rate limiter with a global cost brake and adaptive throttling.

    Checks run in a fixed order and the first failure wins:

    1. Emergency brake: global spend in the trailing hour/day plus the
       estimated cost of this request must stay within the ceilings.
    2. Per-rule sliding windows for the identity's class.
    3. Adaptive throttling: when global load exceeds the threshold, every
       rule is re-checked against ``floor(max_requests * multiplier)``.
    """

    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        cleanup_interval_seconds: float = 10 * 60,
    ) -> None:
        """Initialize the limiter.

        Args:
            config: Limiter configuration (defaults used when omitted).
            clock: Time source function returning UNIX time in seconds.
            cleanup_interval_seconds: Interval of the background purge task.
        """
        self._config = config or RateLimiterConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._usage: dict[str, _UsageLogs] = {}
        self._global = _UsageLogs()
        self._cleanup_task = PeriodicTask("rate-limit-cleanup", self.cleanup, cleanup_interval_seconds)

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    def resolve_identity_class(self, identity_class: IdentityClass | str | None) -> IdentityClass:
        """Map a requested class onto a known class, falling back to the default."""
        if isinstance(identity_class, IdentityClass):
            return identity_class
        if identity_class is None:
            return self._config.default_identity_class
        try:
            return IdentityClass(identity_class.strip().lower())
        except ValueError:
            logger.warning(
                "rate_limit.unknown_identity_class",
                extra={
                    "requested_class": identity_class,
                    "fallback_class": self._config.default_identity_class.value,
                },
            )
            return self._config.default_identity_class

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def check_rate_limit(
        self,
        identity: str,
        identity_class: IdentityClass | str | None = None,
        estimated_tokens: int = 1000,
    ) -> RateLimitResult:
        """Decide whether a request for ``identity`` may proceed.

        This is a pure read: usage logs are not modified and no identity
        record is created.

        Args:
            identity: Unique identifier for rate limiting.
            identity_class: Class selecting the rule-set.
            estimated_tokens: Expected token usage, priced for the emergency brake.

        Returns:
            RateLimitResult with the decision and retry metadata.

        Raises:
            ValueError: If identity is empty or estimated_tokens is negative.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")
        if estimated_tokens < 0:
            raise ValueError("estimated_tokens must be >= 0")

        config = self._config
        now = self._clock()
        if not config.enabled:
            return RateLimitResult(allowed=True, remaining_requests=None, reset_time=now)

        resolved_class = self.resolve_identity_class(identity_class)
        rules = config.rules_for(resolved_class)

        with self._lock:
            result = self._check_emergency_brake(now, estimated_tokens)
            logs = self._usage.get(identity)

            if result is None:
                for rule in rules:
                    result = self._check_rule(logs, rule, rule.max_requests, now)
                    if result is not None:
                        break

            if result is None and config.adaptive_throttling:
                result = self._check_adaptive_throttling(logs, rules, resolved_class, now)

            if result is None:
                return self._build_allowed_result(logs, rules, now)

        logger.warning(
            "rate_limit.rejected",
            extra={
                "identity_hash": hash_for_log(identity),
                "identity_class": resolved_class.value,
                "reason_code": result.reason_code.value if result.reason_code else None,
                "retry_after_s": result.retry_after,
            },
        )
        return result

    def _in_window(self, logs: _UsageLogs | None, window: WindowType, now: float) -> list[UsageEntry]:
        if logs is None:
            return []
        window_start = now - window.seconds
        return [entry for entry in logs.entries(window) if entry.timestamp > window_start]

    def _check_emergency_brake(self, now: float, estimated_tokens: int) -> RateLimitResult | None:
        brake = self._config.emergency_brake
        if not brake.enabled:
            return None

        estimated_cost = estimated_tokens * self._config.cost_per_token
        checks = (
            (WindowType.HOUR, brake.max_hourly_cost, RejectionReason.HOURLY_COST, "Hourly cost limit exceeded"),
            (WindowType.DAY, brake.max_daily_cost, RejectionReason.DAILY_COST, "Daily cost limit exceeded"),
        )
        for window, ceiling, reason_code, reason in checks:
            entries = sorted(self._in_window(self._global, window, now), key=lambda e: e.timestamp)
            spent = sum(entry.estimated_cost for entry in entries)
            if spent + estimated_cost <= ceiling:
                continue

            # Earliest moment enough spend has left the window for this request to fit.
            reset_time = now
            retry_after: float | None = None
            excess = spent + estimated_cost - ceiling
            released = 0.0
            for entry in entries:
                released += entry.estimated_cost
                if released >= excess:
                    reset_time = entry.timestamp + window.seconds
                    retry_after = max(0.0, reset_time - now)
                    break

            return RateLimitResult(
                allowed=False,
                remaining_requests=0,
                reset_time=reset_time,
                retry_after=retry_after,
                reason=reason,
                reason_code=reason_code,
            )
        return None

    def _check_rule(
        self,
        logs: _UsageLogs | None,
        rule: RateLimitRule,
        limit: int,
        now: float,
    ) -> RateLimitResult | None:
        entries = self._in_window(logs, rule.window, now)
        if len(entries) < limit:
            return None

        if entries:
            oldest = min(entry.timestamp for entry in entries)
            reset_time = oldest + rule.window.seconds
            retry_after: float | None = max(0.0, reset_time - now)
        else:
            # A zero limit never frees up.
            reset_time, retry_after = now, None

        return RateLimitResult(
            allowed=False,
            remaining_requests=0,
            reset_time=reset_time,
            retry_after=retry_after,
            reason=f"Rate limit exceeded for per-{rule.window.value} window",
            reason_code=RejectionReason.WINDOW_QUOTA,
        )

    def _system_load(self, now: float) -> float:
        recent = len(self._in_window(self._global, WindowType.MINUTE, now))
        return min(recent / self._config.assumed_capacity_per_minute, 1.0)

    def _load_relief_time(self, now: float) -> float:
        """Time at which global load falls back to the threshold."""
        config = self._config
        timestamps = sorted(entry.timestamp for entry in self._in_window(self._global, WindowType.MINUTE, now))
        allowed_count = math.floor(config.load_threshold * config.assumed_capacity_per_minute)
        index = len(timestamps) - allowed_count - 1
        if index < 0:
            return now
        return timestamps[index] + WindowType.MINUTE.seconds

    def _check_adaptive_throttling(
        self,
        logs: _UsageLogs | None,
        rules: tuple[RateLimitRule, ...],
        identity_class: IdentityClass,
        now: float,
    ) -> RateLimitResult | None:
        if self._system_load(now) <= self._config.load_threshold:
            return None

        multiplier = self._config.multiplier_for(identity_class)
        for rule in rules:
            effective_limit = math.floor(rule.max_requests * multiplier)
            timestamps = sorted(entry.timestamp for entry in self._in_window(logs, rule.window, now))
            if len(timestamps) < effective_limit:
                continue

            # Unblocked when either own usage drops below the reduced limit or load subsides.
            reset_time = self._load_relief_time(now)
            if effective_limit > 0:
                own_relief = timestamps[len(timestamps) - effective_limit] + rule.window.seconds
                reset_time = min(reset_time, own_relief)

            return RateLimitResult(
                allowed=False,
                remaining_requests=0,
                reset_time=reset_time,
                retry_after=max(0.0, reset_time - now),
                reason="System under high load - reduced limits applied",
                reason_code=RejectionReason.ADAPTIVE_THROTTLE,
            )
        return None

    def _build_allowed_result(
        self,
        logs: _UsageLogs | None,
        rules: tuple[RateLimitRule, ...],
        now: float,
    ) -> RateLimitResult:
        """Build an allowed result; the tightest rule decides remaining/reset."""
        remaining: int | None = None
        reset_time = now
        for rule in rules:
            entries = self._in_window(logs, rule.window, now)
            slack = rule.max_requests - len(entries)
            if remaining is None or slack < remaining:
                remaining = slack
                if entries:
                    reset_time = min(entry.timestamp for entry in entries) + rule.window.seconds
                else:
                    reset_time = now + rule.window.seconds
        return RateLimitResult(allowed=True, remaining_requests=remaining, reset_time=reset_time)

    # ------------------------------------------------------------------
    # Usage recording and reporting
    # ------------------------------------------------------------------

    def record_request(
        self,
        identity: str,
        tokens: int,
        identity_class: IdentityClass | str | None = None,
    ) -> None:
        """Append a usage entry to the identity's and the global logs.

        Must be called only after the provider request succeeded.

        Raises:
            ValueError: If identity is empty or tokens is negative.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")
        if tokens < 0:
            raise ValueError("tokens must be >= 0")
        if not self._config.enabled:
            return

        now = self._clock()
        entry = UsageEntry(
            timestamp=now,
            token_count=tokens,
            estimated_cost=tokens * self._config.cost_per_token,
        )

        with self._lock:
            self._usage.setdefault(identity, _UsageLogs()).append(entry)
            self._global.append(entry)

        logger.debug(
            "rate_limit.recorded",
            extra={
                "identity_hash": hash_for_log(identity),
                "identity_class": self.resolve_identity_class(identity_class).value,
                "tokens": tokens,
                "estimated_cost": entry.estimated_cost,
            },
        )

    def get_usage_metrics(self, identity: str | None = None) -> UsageMetrics:
        """Aggregate usage over each trailing window.

        Args:
            identity: Identity to report on; global usage when None.

        Returns:
            UsageMetrics with day-window totals and per-window aggregates.
        """
        now = self._clock()
        with self._lock:
            logs = self._global if identity is None else self._usage.get(identity)
            per_window: dict[WindowType, WindowUsage] = {}
            for window in WindowType:
                entries = self._in_window(logs, window, now)
                per_window[window] = WindowUsage(
                    requests=len(entries),
                    tokens=sum(entry.token_count for entry in entries),
                    estimated_cost=sum(entry.estimated_cost for entry in entries),
                )

        totals = per_window[WindowType.DAY]
        return UsageMetrics(
            total_requests=totals.requests,
            total_tokens=totals.tokens,
            estimated_cost=totals.estimated_cost,
            current_window_usage=per_window,
        )

    # ------------------------------------------------------------------
    # Configuration and housekeeping
    # ------------------------------------------------------------------

    def update_config(self, **changes: object) -> None:
        """Replace selected configuration fields at runtime.

        Accepts typed values or plain JSON-like values, e.g.
        ``rules={"guest": {"minute": 1}}`` or ``emergency_brake={"max_hourly_cost": 5}``.
        A partial ``emergency_brake`` mapping is merged into the current one, and
        ``rules`` replaces the rule-sets of the classes it names only.

        Raises:
            ValidationAppError: On unknown fields or invalid values.
        """
        known = {f.name for f in dataclasses.fields(RateLimiterConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValidationAppError(
                code="rate_limit_unknown_config_field",
                message=f"Unknown rate limiter config field(s): {', '.join(unknown)}",
            )

        try:
            normalized = self._normalize_config_changes(changes)
            with self._lock:
                self._config = dataclasses.replace(self._config, **normalized)
        except (TypeError, ValueError) as exc:
            raise ValidationAppError(
                code="rate_limit_invalid_config",
                message=f"Invalid rate limiter configuration: {exc}",
            ) from exc

        logger.info("rate_limit.config_updated", extra={"fields": sorted(changes)})

    def _normalize_config_changes(self, changes: Mapping[str, object]) -> dict[str, object]:
        normalized = dict(changes)
        if "rules" in normalized:
            # Rule-sets are replaced per class; classes not mentioned keep theirs.
            normalized["rules"] = {
                **self._config.rules,
                **parse_rule_sets(normalized["rules"]),  # type: ignore[arg-type]
            }
        if "throttle_multipliers" in normalized:
            normalized["throttle_multipliers"] = {
                **self._config.throttle_multipliers,
                **parse_throttle_multipliers(normalized["throttle_multipliers"]),  # type: ignore[arg-type]
            }
        if "default_identity_class" in normalized:
            normalized["default_identity_class"] = IdentityClass(normalized["default_identity_class"])
        brake = normalized.get("emergency_brake")
        if isinstance(brake, Mapping):
            normalized["emergency_brake"] = dataclasses.replace(self._config.emergency_brake, **brake)
        elif brake is not None and not isinstance(brake, EmergencyBrakeConfig):
            raise TypeError("emergency_brake must be a mapping or EmergencyBrakeConfig")
        return normalized

    def cleanup(self) -> None:
        """Purge entries older than their window and drop cold identities."""
        now = self._clock()
        with self._lock:
            purged = self._global.purge(now)
            dropped = 0
            for identity in list(self._usage):
                logs = self._usage[identity]
                purged += logs.purge(now)
                if logs.is_empty():
                    del self._usage[identity]
                    dropped += 1
            tracked = len(self._usage)

        logger.info(
            "rate_limit.cleanup",
            extra={
                "purged_entries": purged,
                "dropped_identities": dropped,
                "tracked_identities": tracked,
            },
        )

    def reset(self, identity: str | None = None) -> None:
        """Reset usage for one identity, or for everyone (including global logs)."""
        with self._lock:
            if identity is not None:
                self._usage.pop(identity, None)
            else:
                self._usage.clear()
                self._global = _UsageLogs()

    def tracked_identities(self) -> int:
        with self._lock:
            return len(self._usage)

    def start_cleanup(self) -> None:
        """Start the periodic purge task on the running event loop."""
        self._cleanup_task.start()

    async def stop_cleanup(self) -> None:
        await self._cleanup_task.stop()
