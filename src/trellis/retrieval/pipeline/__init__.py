from trellis.retrieval.pipeline.context import AssembledContext, assemble_context
from trellis.retrieval.pipeline.models import (
    ChannelReport,
    PipelineStage,
    QueryResult,
    QueryStatus,
)
from trellis.retrieval.pipeline.orchestrator import RetrievalPipeline

__all__ = [
    "AssembledContext",
    "ChannelReport",
    "PipelineStage",
    "QueryResult",
    "QueryStatus",
    "RetrievalPipeline",
    "assemble_context",
]
