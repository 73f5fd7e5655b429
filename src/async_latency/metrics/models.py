"""Pydantic models for recovered metrics and the sidecar wire format."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serialises field names as camelCase, accepts either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RawMetricRecord(BaseModel):
    """One record as written by the runtime collector."""

    function: str
    duration: float
    timestamp: float
    line: int
    file: str
    thread_id: int = Field(alias="threadId")

    model_config = ConfigDict(populate_by_name=True)


class FunctionMetric(CamelModel):
    """Latency of one completed async call."""

    name: str
    total_time: float = Field(ge=0)
    compute_time: float | None = None
    suspend_time: float | None = None
    await_count: int | None = None
    depth: int = 0
