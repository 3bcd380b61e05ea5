class RetrievalError(Exception):
    """Base class for all errors raised by trellis.retrieval."""


class ChannelUnavailable(RetrievalError):
    """A single retrieval channel timed out or errored for one query."""

    def __init__(self, channel: str, reason: str, timed_out: bool = False):
        self.channel = channel
        self.reason = reason
        self.timed_out = timed_out
        super().__init__(f"Channel '{channel}' unavailable: {reason}")


class AllChannelsFailed(RetrievalError):
    """Every dispatched channel was unavailable; no partial result exists."""

    def __init__(self, channel_errors: dict[str, str]):
        self.channel_errors = channel_errors
        details = ", ".join(f"{name}: {err}" for name, err in channel_errors.items())
        super().__init__(f"All retrieval channels failed ({details})")


class EmbeddingFailure(RetrievalError):
    """The embedding service failed to produce a vector."""


class SummarizationFailure(RetrievalError):
    """Summarizing a cluster failed after all retry attempts."""


class TreeBuildAborted(RetrievalError):
    """Too many clusters failed summarization during a tree build."""

    def __init__(self, failed: int, attempted: int, threshold: float):
        self.failed = failed
        self.attempted = attempted
        self.threshold = threshold
        super().__init__(
            f"RAPTOR build aborted: {failed}/{attempted} clusters failed "
            f"(threshold {threshold:.2f})"
        )


class TreeInvariantViolation(RetrievalError):
    """The RAPTOR tree structure is corrupt. Signals a bug; never repaired."""


class RerankFailure(RetrievalError):
    """The cross-encoder failed to score a query/candidate pair."""


class PipelineTimeout(RetrievalError):
    """The overall query deadline expired before any channel completed."""
