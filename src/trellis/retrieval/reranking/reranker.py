import asyncio
import logging
import math
from collections.abc import Mapping

from trellis.retrieval.exceptions import RerankFailure
from trellis.retrieval.reranking.base import CrossEncoderBase
from trellis.retrieval.retrieval.models import FusedResult, RerankedResult

logger = logging.getLogger(__name__)


class Reranker:
    """Reorders the top fused candidates by cross-encoder score.

    Scoring failures never abort: a candidate whose pair could not be scored
    keeps its fused position, and scored candidates are reordered among the
    remaining positions by score (ties by fused order).
    """

    def __init__(
        self,
        cross_encoder: CrossEncoderBase | None,
        top_n: int = 20,
        concurrency: int = 4,
        timeout: float | None = None,
    ):
        self._cross_encoder = cross_encoder
        self.top_n = top_n
        self._concurrency = max(1, concurrency)
        self._timeout = timeout

    @property
    def available(self) -> bool:
        return self._cross_encoder is not None

    async def _score(
        self, semaphore: asyncio.Semaphore, query: str, text: str, timeout: float | None
    ) -> float:
        assert self._cross_encoder is not None
        if not text:
            raise RerankFailure("Candidate has no text")
        async with semaphore:
            try:
                score = await asyncio.wait_for(
                    self._cross_encoder.score(query, text), timeout
                )
            except TimeoutError as e:
                raise RerankFailure("Cross-encoder call timed out") from e
        score = float(score)
        if math.isnan(score):
            raise RerankFailure("Cross-encoder returned NaN")
        return score

    async def rerank(
        self,
        query: str,
        fused: list[FusedResult],
        texts: Mapping[str, str],
        timeout: float | None = None,
    ) -> tuple[list[RerankedResult], int]:
        """Rerank the top-N fused results.

        Args:
            query: The query text scored against each candidate.
            fused: Fused results in fusion order.
            texts: Text for each ref.
            timeout: Per-call timeout override (defaults to the configured one).

        Returns:
            Tuple of (results in final order, number of failed pairs).
        """
        head = fused[: self.top_n]
        scores: list[float | None] = [None] * len(head)
        failures = 0

        if self._cross_encoder is not None and head:
            semaphore = asyncio.Semaphore(self._concurrency)
            call_timeout = timeout if timeout is not None else self._timeout
            outcomes = await asyncio.gather(
                *(
                    self._score(semaphore, query, texts.get(r.ref, ""), call_timeout)
                    for r in head
                ),
                return_exceptions=True,
            )
            for i, outcome in enumerate(outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    failures += 1
                    logger.warning(
                        f"Rerank failed for '{head[i].ref}', keeping fused position: "
                        f"{outcome}"
                    )
                else:
                    scores[i] = outcome

        slots = [i for i, score in enumerate(scores) if score is not None]
        by_score = sorted(slots, key=lambda i: (-scores[i], i))  # type: ignore[operator]
        order = list(range(len(head)))
        for slot, source in zip(slots, by_score):
            order[slot] = source

        results = [
            RerankedResult(
                ref=head[i].ref,
                text=texts.get(head[i].ref, ""),
                rerank_score=scores[i],
                fused_score=head[i].fused_score,
                contributing_channels=head[i].contributing_channels,
            )
            for i in order
        ]
        results.extend(
            RerankedResult(
                ref=r.ref,
                text=texts.get(r.ref, ""),
                fused_score=r.fused_score,
                contributing_channels=r.contributing_channels,
            )
            for r in fused[self.top_n :]
        )
        return results, failures
