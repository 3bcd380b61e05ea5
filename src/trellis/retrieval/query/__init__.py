from trellis.retrieval.query.expansion import (
    LLMQueryExpander,
    QueryExpanderBase,
    dedupe_variants,
)

__all__ = ["LLMQueryExpander", "QueryExpanderBase", "dedupe_variants"]
