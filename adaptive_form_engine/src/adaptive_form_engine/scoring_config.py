"""
Scoring Configuration

Central place for every heuristic threshold used by the session scoring model,
the context analyzer and the fallback adaptation rules. Keeping them in one
frozen structure lets the scoring model be audited and unit-tested in isolation.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ScoringConfig:
    """Thresholds and weights for session scoring (times in milliseconds)."""

    # Engagement score
    diversity_divisor: float = 6.0
    diversity_cap: float = 0.3
    optimal_duration_min_minutes: float = 2.0
    optimal_duration_max_minutes: float = 5.0
    optimal_duration_weight: float = 0.3
    long_duration_decay_per_minute: float = 0.05
    long_duration_floor: float = 0.1
    activity_rate_min: float = 5.0  # events per minute
    activity_rate_max: float = 20.0
    activity_rate_weight: float = 0.2
    form_submit_weight: float = 0.2
    field_change_threshold: int = 3
    field_change_weight: float = 0.1

    # Conversion likelihood
    base_conversion: float = 0.5
    returning_user_bonus: float = 0.2
    form_submit_bonus: float = 0.3
    adaptation_bonus: float = 0.1
    high_confidence_threshold: float = 0.7
    high_confidence_bonus: float = 0.15
    abandonment_penalty: float = 0.2
    conversion_error_rate_threshold: float = 0.2
    error_rate_penalty: float = 0.15
    long_session_ms: int = 600000  # 10 minutes
    long_session_penalty: float = 0.1

    # Needs assistance
    assistance_error_rate: float = 0.25
    assistance_hesitation_ms: float = 5000.0
    assistance_failed_submissions: int = 1
    assistance_typing_confidence: float = 0.3

    # Risk of abandonment
    stalled_session_max_events: int = 10
    bounce_max_events: int = 3
    bounce_duration_ms: int = 30000
    visibility_change_threshold: int = 3
    low_engagement_threshold: float = 0.3

    # High value session
    high_value_engagement: float = 0.7

    # Risk factors / opportunities
    risk_error_rate: float = 0.2
    mobile_scroll_frequency: float = 0.8
    late_night_typing_speed: float = 0.3
    fast_typing_speed: float = 0.8
    accurate_error_rate: float = 0.1
    low_precision: float = 0.5
    help_seeking_threshold: float = 0.5

    # Behavioral context updates
    engagement_increment: float = 0.1
    help_seeking_increment: float = 0.1
    typing_speed_reference: float = 300.0  # key presses per minute mapped to 1.0
    min_key_events_for_error_rate: int = 5
    hesitation_reference_ms: float = 10000.0

    # Behavioral patterns
    min_key_events_for_pattern: int = 10
    very_fast_interval_ms: float = 100.0
    fast_interval_ms: float = 200.0
    moderate_interval_ms: float = 400.0

    # Classification confidence
    confidence_event_reference: int = 50
    confidence_duration_reference_ms: int = 300000
    confidence_event_weight: float = 0.6
    confidence_duration_weight: float = 0.4

    # Navigation style
    min_focus_events: int = 3
    jump_ratio: float = 0.3

    # Fallback rules
    min_events_for_fallback: int = 3

    # User history
    max_session_summaries: int = 10


DEFAULT_SCORING_CONFIG = ScoringConfig()
