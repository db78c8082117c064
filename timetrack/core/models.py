"""Core data models for TimeTrack.

Defines all dataclasses and enums used across the application:
- Sampling: Sample, Session
- Categorization: Category, Rule, RuleType, MatchType, MatchResult,
  CategorizationResult
- Tracking: Activity, TrackerState, TrackerSettings, TrackerStats,
  IdleTransition
- Statistics: ProductivityStats and its breakdown rows
- Results: OperationResult
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

UNCATEGORIZED_ID = "uncategorized"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OperationResult:
    """Outcome of an operation that can be rejected without raising."""
    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "OperationResult":
        return cls(success=True)

    @classmethod
    def fail(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)

    def __bool__(self) -> bool:
        return self.success


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

@dataclass
class Sample:
    """One raw observation of the foreground window at an instant."""
    app_name: str
    window_title: str
    timestamp: Optional[datetime] = None
    url: Optional[str] = None
    process_path: Optional[str] = None


@dataclass
class Session:
    """The in-progress focus period owned by a SessionTracker."""
    id: str
    app_name: str
    window_title: str
    start_time: datetime
    is_idle: bool = False
    process_path: Optional[str] = None
    url: Optional[str] = None


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------

class RuleType(Enum):
    """Which sample field(s) a rule inspects."""
    APP = "app"
    TITLE = "title"
    URL = "url"
    COMBINED = "combined"


class MatchType(Enum):
    """How a rule pattern is compared against text."""
    EXACT = "exact"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"


@dataclass
class Category:
    """A classification bucket with a productivity weight."""
    id: str
    name: str
    color: str = "#9CA3AF"
    icon: str = "help-circle"
    is_productivity: bool = True
    productivity_score: int = 50   # 0-100
    is_default: bool = False       # built-in, cannot be deleted
    order: int = 50


@dataclass
class Rule:
    """A pattern-based predicate mapping samples to a Category."""
    id: str
    category_id: str
    type: RuleType
    match_type: MatchType
    app_pattern: Optional[str] = None
    title_pattern: Optional[str] = None
    url_pattern: Optional[str] = None
    priority: int = 50             # higher priority rules are checked first
    is_enabled: bool = True
    is_default: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    def validate(self) -> list[str]:
        """Return a list of invariant violations (empty when valid)."""
        errors: list[str] = []
        if not self.id:
            errors.append("rule id is required")
        if not self.category_id:
            errors.append("category id is required")
        required = {
            RuleType.APP: [("app_pattern", self.app_pattern)],
            RuleType.TITLE: [("title_pattern", self.title_pattern)],
            RuleType.URL: [("url_pattern", self.url_pattern)],
        }
        if self.type is RuleType.COMBINED:
            if not (self.app_pattern or self.title_pattern or self.url_pattern):
                errors.append("combined rule needs at least one pattern")
        else:
            for name, value in required[self.type]:
                if not value:
                    errors.append(f"{self.type.value} rule needs {name}")
        return errors


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one pattern against one piece of text."""
    matched: bool
    confidence: float = 0.0


NO_MATCH = MatchResult(matched=False, confidence=0.0)


@dataclass
class CategorizationResult:
    """The category assigned to an activity, and how it was assigned."""
    activity_id: Optional[str]
    category_id: str
    auto_assigned: bool = True     # False when manually overridden
    rule_id: Optional[str] = None
    confidence: float = 50.0       # 0-100
    overridden_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Activity:
    """A finalized, immutable focus period handed to the persistence layer."""
    id: str
    application_name: str
    window_title: str
    start_time: datetime
    end_time: datetime
    duration: int                  # whole seconds, == end_time - start_time
    category_id: str = UNCATEGORIZED_ID
    category_auto_assigned: bool = True
    category_confidence: float = 50.0
    is_coded: bool = False
    is_idle: bool = False
    process_path: Optional[str] = None
    source: str = "desktop"


class TrackerState(Enum):
    """Lifecycle state of a SessionTracker."""
    STOPPED = "stopped"
    TRACKING = "tracking"
    IDLE = "idle"
    PAUSED = "paused"


class IdleTransitionKind(Enum):
    IDLE_START = "idle_start"
    IDLE_END = "idle_end"


@dataclass(frozen=True)
class IdleTransition:
    """An edge in the idle state: the user went idle, or came back."""
    kind: IdleTransitionKind
    started_at: datetime           # when the idle period began
    at: datetime                   # when the transition was observed
    idle_seconds: float = 0.0


@dataclass
class TrackerSettings:
    """Tunable tracker behaviour. All durations are in seconds."""
    idle_threshold: float = 300
    min_activity_duration: float = 10
    poll_interval: float = 1.0
    merge_threshold: float = 30
    auto_categorize: bool = True
    auto_merge: bool = True
    track_idle_time: bool = True


@dataclass
class TrackerStats:
    """Running totals for everything a tracker has emitted."""
    total_tracked_time: int = 0
    total_idle_time: int = 0
    activities_logged: int = 0
    activities_merged: int = 0
    activities_discarded: int = 0
    productive_time: int = 0
    distracting_time: int = 0

    @property
    def productivity_score(self) -> int:
        """Productive share of categorized time; uncategorized time is left out."""
        categorized = self.productive_time + self.distracting_time
        if categorized <= 0:
            return 0
        return round(self.productive_time / categorized * 100)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

@dataclass
class CategoryBreakdown:
    """Time spent in one category over a stats window."""
    category_id: str
    category_name: str
    color: str
    total_seconds: int
    percentage: int
    is_productivity: bool


@dataclass
class AppUsage:
    """Time spent in one application over a stats window."""
    app_name: str
    category_id: str
    total_seconds: int
    percentage: int


@dataclass
class HourlyBucket:
    """Seconds per productivity class within one hour of the day (0-23)."""
    hour: int
    productive_seconds: int = 0
    distracting_seconds: int = 0
    uncategorized_seconds: int = 0


@dataclass
class DailyTrendPoint:
    """Productivity score for one calendar day."""
    date: str                      # ISO date, e.g. "2025-01-15"
    productivity_score: int
    total_seconds: int
    productive_seconds: int


@dataclass
class ProductivityStats:
    """Aggregated productivity statistics over a window of activities."""
    total_time: int = 0
    productive_time: int = 0
    distracting_time: int = 0
    uncategorized_time: int = 0
    productivity_score: int = 0
    category_breakdown: list[CategoryBreakdown] = field(default_factory=list)  # sorted by time descending
    top_apps: list[AppUsage] = field(default_factory=list)
    hourly_breakdown: list[HourlyBucket] = field(default_factory=list)  # always 24 entries
    daily_trend: list[DailyTrendPoint] = field(default_factory=list)    # sorted by date
