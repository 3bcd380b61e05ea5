from trellis.retrieval.retrieval.channels import (
    ChannelAdapter,
    DenseChannel,
    SparseChannel,
    SummaryChannel,
)
from trellis.retrieval.retrieval.fusion import FusionEngine
from trellis.retrieval.retrieval.models import (
    Channel,
    ChannelResult,
    ChannelStatus,
    FusedResult,
    RerankedResult,
    RetrievalCandidate,
)

__all__ = [
    "Channel",
    "ChannelAdapter",
    "ChannelResult",
    "ChannelStatus",
    "DenseChannel",
    "FusedResult",
    "FusionEngine",
    "RerankedResult",
    "RetrievalCandidate",
    "SparseChannel",
    "SummaryChannel",
]
