from pydantic import BaseModel, Field


class RateLimitWindow(BaseModel):
    window_seconds: int = 60
    max_requests: int = 100


class IngestRules(BaseModel):
    enabled: bool = True
    rate_limit: RateLimitWindow = Field(default_factory=RateLimitWindow)
    allow_localhost_origin: bool = True
    extra_bot_patterns: list[str] = Field(default_factory=list)


class SessionRules(BaseModel):
    idle_timeout_minutes: int = 30
    engagement_threshold_ms: int = 10_000


class CampaignRules(BaseModel):
    sync_window_days: int = 30
    write_chunk_size: int = 500
    insight_chunk_days: int = 7
    transient_error_codes: list[int] = Field(default_factory=lambda: [1, 2, 17])
    retry_backoff_seconds: float = 3.0
    http_timeout_seconds: float = 30.0
    default_currency: str = "EUR"


class StatsRules(BaseModel):
    page_size: int = 1000
    top_n: int = 10
    retention_max_weeks: int = 12
    vitals_top_pages: int = 20


class Rules(BaseModel):
    ingest: IngestRules = Field(default_factory=IngestRules)
    sessions: SessionRules = Field(default_factory=SessionRules)
    campaigns: CampaignRules = Field(default_factory=CampaignRules)
    stats: StatsRules = Field(default_factory=StatsRules)
