from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

KM_TO_MILES = 0.621371
OTHER_ACTIVITY_TYPE = "Other"


@dataclass
class CredentialRecord:
    user_id: str
    display_name: str
    access_token: str
    refresh_token: str
    # UNIX seconds; the access token is invalid at/after this instant
    expires_at: int
    # ISO-8601 UTC, set once at first authorisation
    connected_at: str


@dataclass
class ActivityRecord:
    distance_meters: float
    activity_type: str = OTHER_ACTIVITY_TYPE
    start_date: Optional[datetime] = None


@dataclass
class TypeTotals:
    distance_km: float = 0.0
    count: int = 0


TypeBreakdown = Dict[str, TypeTotals]


@dataclass
class AthleteBreakdown:
    total_km: float = 0.0
    activity_count: int = 0
    by_type: TypeBreakdown = field(default_factory=dict)


@dataclass
class AthleteStat:
    display_name: str
    total_distance_km: float
    activity_count: int
    by_type: TypeBreakdown = field(default_factory=dict)


@dataclass(frozen=True)
class TrackingPeriod:
    start: date
    end: date


@dataclass
class StatsSnapshot:
    total_distance_km: float = 0.0
    athletes: List[AthleteStat] = field(default_factory=list)
    activity_types: TypeBreakdown = field(default_factory=dict)
    last_updated: Optional[datetime] = None
    tracking_period: Optional[TrackingPeriod] = None

    @property
    def total_distance_miles(self) -> float:
        return self.total_distance_km * KM_TO_MILES

    @property
    def athlete_count(self) -> int:
        return len(self.athletes)


@dataclass
class UserFailure:
    user_id: str
    display_name: str
    stage: str
    error: str


@dataclass
class RunReport:
    snapshot: StatsSnapshot
    processed: int = 0
    failures: List[UserFailure] = field(default_factory=list)
    refreshed_user_ids: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> int:
        return self.processed - len(self.failures)
