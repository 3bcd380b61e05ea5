from enum import StrEnum

from pydantic import BaseModel, Field

from trellis.retrieval.exceptions import ChannelUnavailable


class Channel(StrEnum):
    DENSE = "dense"
    SPARSE = "sparse"
    SUMMARY = "summary"


class ChannelStatus(StrEnum):
    OK = "ok"
    UNAVAILABLE = "unavailable"


class RetrievalCandidate(BaseModel):
    """One ranked hit from a single channel. Rank 1 is best."""

    ref: str
    channel: Channel
    rank: int = Field(ge=1)
    raw_score: float


class ChannelResult(BaseModel):
    """Outcome of one channel search.

    An unavailable result is distinct from an ok result with no candidates.
    """

    channel: Channel
    status: ChannelStatus = ChannelStatus.OK
    candidates: list[RetrievalCandidate] = []
    error: str | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.status == ChannelStatus.OK

    @classmethod
    def from_scores(
        cls, channel: Channel, scored: list[tuple[str, float]], k: int
    ) -> "ChannelResult":
        """Build a result from (ref, score) pairs already in best-first order.

        Duplicate refs keep their first occurrence; ranks run 1..k.
        """
        seen: set[str] = set()
        candidates: list[RetrievalCandidate] = []
        for ref, score in scored:
            if ref in seen:
                continue
            seen.add(ref)
            candidates.append(
                RetrievalCandidate(
                    ref=ref,
                    channel=channel,
                    rank=len(candidates) + 1,
                    raw_score=float(score),
                )
            )
            if len(candidates) >= k:
                break
        return cls(channel=channel, candidates=candidates)

    @classmethod
    def unavailable(
        cls, channel: Channel, error: str, timed_out: bool = False
    ) -> "ChannelResult":
        return cls(
            channel=channel,
            status=ChannelStatus.UNAVAILABLE,
            error=error,
            timed_out=timed_out,
        )

    @classmethod
    def from_error(cls, error: ChannelUnavailable) -> "ChannelResult":
        return cls.unavailable(Channel(error.channel), error.reason, error.timed_out)


class FusedResult(BaseModel):
    ref: str
    fused_score: float
    contributing_channels: frozenset[Channel]
    best_rank: int


class RerankedResult(BaseModel):
    """Final output unit.

    rerank_score is None when the cross-encoder did not score this candidate
    (outside the top-N, reranking disabled, or the call failed).
    """

    ref: str
    text: str
    rerank_score: float | None = None
    fused_score: float
    contributing_channels: frozenset[Channel] = frozenset()
