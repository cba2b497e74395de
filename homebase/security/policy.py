"""
HOMEBASE - Security Policies
=============================
Immutable policy objects handed to the session gate, the security monitor
and the analyzers at construction time. Build them from Settings once; never
read Settings from inside a component.
"""

from dataclasses import dataclass, field
from datetime import timedelta

from homebase.config import Settings


@dataclass(frozen=True)
class RiskThresholds:
    """Score boundaries for severity buckets (inclusive on the upper bucket)."""
    low: int = 30
    medium: int = 50
    high: int = 70
    critical: int = 90


@dataclass(frozen=True)
class SessionPolicy:
    session_duration: timedelta = timedelta(days=7)
    inactivity_timeout: timedelta = timedelta(minutes=30)
    enforce_single_session: bool = True
    enable_offline_tokens: bool = True
    offline_token_duration: timedelta = timedelta(days=30)
    user_agent_similarity: float = 0.8

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionPolicy":
        return cls(
            session_duration=timedelta(hours=settings.session_duration_hours),
            inactivity_timeout=timedelta(minutes=settings.session_inactivity_minutes),
            enforce_single_session=settings.enforce_single_session,
            enable_offline_tokens=settings.enable_offline_tokens,
            offline_token_duration=timedelta(days=settings.offline_token_days),
        )


@dataclass(frozen=True)
class MonitoringPolicy:
    """
    Thresholds for the event pipeline, the threat sweeps and the behavior
    analyzer.

    Incidents open at `thresholds.high`; automated responses fire at
    `auto_block_threshold` when `auto_block_enabled`.
    """
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    auto_block_enabled: bool = True
    auto_block_threshold: int = 80

    # Alerting
    failed_login_alert_threshold: int = 10
    alert_window: timedelta = timedelta(hours=1)

    # Threat sweeps
    sweep_window: timedelta = timedelta(hours=1)
    brute_force_threshold: int = 10
    multi_account_threshold: int = 5
    off_hours_login_threshold: int = 3
    business_hours_start: int = 6
    business_hours_end: int = 22
    takeover_ip_threshold: int = 2
    takeover_device_threshold: int = 2
    export_threshold: int = 5

    # Behavior baseline
    baseline_days: int = 30
    baseline_event_limit: int = 1000
    behavior_window: timedelta = timedelta(hours=24)
    volume_multiplier: int = 3
    high_activity_count: int = 50

    @property
    def incident_threshold(self) -> int:
        return self.thresholds.high

    @classmethod
    def from_settings(cls, settings: Settings) -> "MonitoringPolicy":
        return cls(
            thresholds=RiskThresholds(
                low=settings.risk_threshold_low,
                medium=settings.risk_threshold_medium,
                high=settings.risk_threshold_high,
                critical=settings.risk_threshold_critical,
            ),
            auto_block_enabled=settings.auto_block_enabled,
            auto_block_threshold=settings.auto_block_threshold,
            failed_login_alert_threshold=settings.failed_login_alert_threshold,
            brute_force_threshold=settings.failed_login_alert_threshold,
            multi_account_threshold=settings.suspicious_ip_account_threshold,
        )
