import logging
import math
from collections.abc import Mapping, Sequence

from trellis.retrieval.retrieval.models import Channel, FusedResult, RetrievalCandidate

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60


class FusionEngine:
    """Reciprocal Rank Fusion over per-channel ranked candidate lists.

    Each candidate with rank r in a channel contributes 1 / (k + r) to the
    fused score of its ref. Output order is fully deterministic: fused score
    descending, then best rank ascending, then ref.
    """

    def __init__(self, k: int = DEFAULT_RRF_K, max_results: int | None = None):
        if k < 0:
            raise ValueError("RRF constant k must be non-negative")
        self.k = k
        self.max_results = max_results

    def fuse(
        self, results: Mapping[Channel, Sequence[RetrievalCandidate]]
    ) -> list[FusedResult]:
        # Best rank per (ref, channel); a ref repeated within a channel counts once
        ranks: dict[str, dict[Channel, int]] = {}
        for channel in sorted(results):
            for candidate in results[channel]:
                per_channel = ranks.setdefault(candidate.ref, {})
                current = per_channel.get(channel)
                if current is None or candidate.rank < current:
                    per_channel[channel] = candidate.rank

        fused: list[FusedResult] = []
        for ref, per_channel in ranks.items():
            channels = sorted(per_channel)
            # fsum is exactly rounded, so equal rank multisets give equal scores
            score = math.fsum(1.0 / (self.k + per_channel[c]) for c in channels)
            fused.append(
                FusedResult(
                    ref=ref,
                    fused_score=score,
                    contributing_channels=frozenset(channels),
                    best_rank=min(per_channel.values()),
                )
            )

        fused.sort(key=lambda r: (-r.fused_score, r.best_rank, r.ref))
        if self.max_results is not None:
            fused = fused[: self.max_results]

        logger.debug(
            f"RRF fused {sum(len(v) for v in results.values())} candidates from "
            f"{len(results)} channels into {len(fused)} results"
        )
        return fused
