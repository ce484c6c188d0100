from pydantic import BaseModel, Field, model_validator


class ProjectRules(BaseModel):
    slug: str = "shared-link-attribution"
    rules_version: str = "1"


class AttributionRules(BaseModel):
    buffer_days: int = Field(default=2, ge=0)
    min_gap_days: int = Field(default=3, ge=1)

    @model_validator(mode="after")
    def _gap_covers_buffer(self) -> "AttributionRules":
        # A gap shorter than the buffer would let a window run past the next event
        if self.min_gap_days <= self.buffer_days:
            raise ValueError("min_gap_days must be greater than buffer_days")
        return self


class AggregationRules(BaseModel):
    top_n: int = Field(default=10, ge=1)
    include_timeseries: bool = True
    max_workers: int | None = Field(default=None, ge=1)


class OrchestratorRules(BaseModel):
    max_link_workers: int = Field(default=4, ge=1)
    parallel_aggregation: bool = True
    snapshot_ttl_seconds: int = Field(default=300, ge=0)


class StorageRules(BaseModel):
    backend: str = "sqlite"
    db_path: str = "attribution.db"
    migrations_dir: str = "migrations"


class LoggingRules(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Rules(BaseModel):
    project: ProjectRules = Field(default_factory=ProjectRules)
    attribution: AttributionRules = Field(default_factory=AttributionRules)
    aggregation: AggregationRules = Field(default_factory=AggregationRules)
    orchestrator: OrchestratorRules = Field(default_factory=OrchestratorRules)
    storage: StorageRules = Field(default_factory=StorageRules)
    logging: LoggingRules = Field(default_factory=LoggingRules)
