from enum import StrEnum

from pydantic import BaseModel

from trellis.retrieval.retrieval.models import (
    Channel,
    ChannelStatus,
    FusedResult,
    RerankedResult,
)


class PipelineStage(StrEnum):
    EXPAND = "expand"
    DISPATCH = "dispatch"
    FUSE = "fuse"
    RERANK = "rerank"
    ASSEMBLE = "assemble_context"


class QueryStatus(StrEnum):
    COMPLETED = "completed"


class ChannelReport(BaseModel):
    channel: Channel
    status: ChannelStatus
    candidates: int = 0
    error: str | None = None
    timed_out: bool = False


class QueryResult(BaseModel):
    """Outcome of a completed query.

    A query that cannot produce any result raises instead of returning, so
    status is always COMPLETED. degraded is set when a channel was
    unavailable, a stage was skipped for lack of time, or reranking fell back
    to fusion order for some candidates.
    """

    query: str
    variants: list[str] = []
    status: QueryStatus = QueryStatus.COMPLETED
    results: list[RerankedResult] = []
    fused: list[FusedResult] = []
    context: str = ""
    context_refs: list[str] = []
    degraded: bool = False
    warnings: list[str] = []
    channels: dict[Channel, ChannelReport] = {}
    skipped_stages: list[PipelineStage] = []
    tree_version: int | None = None
