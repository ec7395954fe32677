from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class IndicatorType(str, Enum):
    C2_ENDPOINT = "c2-endpoint"
    URL = "url"
    FILE_HASH = "file-hash"
    IP = "ip"
    DOMAIN = "domain"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class Indicator(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    type: IndicatorType
    value: str
    port: Optional[int] = None
    source: str
    sources: FrozenSet[str] = frozenset()
    severity: Severity
    confidence: int = Field(ge=0, le=100)
    family: Optional[str] = None
    threat_type: Optional[str] = None
    first_seen: datetime
    last_seen: datetime
    tags: FrozenSet[str] = frozenset()
    metadata: Dict[str, Any] = {}

    @model_validator(mode="after")
    def _check_seen_order(self):
        if self.last_seen < self.first_seen:
            raise ValueError(f"last_seen precedes first_seen for {self.key}")
        return self


class SourceConfig(BaseModel):
    name: str
    enabled: bool = True
    timeout: float = 30.0  # seconds, per attempt
    retries: int = 2
    adapter: str = ""
    options: Dict[str, Any] = {}

    @model_validator(mode="after")
    def _default_adapter(self):
        if not self.adapter:
            self.adapter = self.name
        return self


class SourceOutcome(BaseModel):
    source: str
    status: OutcomeStatus
    message: str = ""
    attempts: int = 0
    count: int = 0
    elapsed_ms: float = 0.0


class SourceError(BaseModel):
    source: str
    kind: str
    message: str


class AggregationRun(BaseModel):
    started_at: datetime
    elapsed_ms: float = 0.0
    outcomes: List[SourceOutcome] = []
    indicators: List[Indicator] = []
    errors: List[SourceError] = []

    @property
    def indicator_count(self) -> int:
        return len(self.indicators)

    @property
    def total_sources(self) -> int:
        return sum(1 for o in self.outcomes if o.status != OutcomeStatus.SKIPPED)

    @property
    def successful_sources(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.SUCCESS)


class Distribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    count: int


class TrendPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    total: int
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int = 0
    generated_at: datetime
    total: int = 0
    recent: Tuple[Indicator, ...] = ()
    by_type: Tuple[Distribution, ...] = ()
    by_source: Tuple[Distribution, ...] = ()
    by_severity: Tuple[Distribution, ...] = ()
    by_family: Tuple[Distribution, ...] = ()
    sources: Tuple[SourceOutcome, ...] = ()
    errors: Tuple[SourceError, ...] = ()
    run_started_at: Optional[datetime] = None
    run_elapsed_ms: float = 0.0
    run_indicator_count: int = 0
    trend: Tuple[TrendPoint, ...] = ()

    def count_for(self, table: str, name: str) -> int:
        for entry in getattr(self, table):
            if entry.name == name:
                return entry.count
        return 0
