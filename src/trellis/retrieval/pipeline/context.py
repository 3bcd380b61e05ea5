from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Literal

import tiktoken

from trellis.retrieval.retrieval.models import RerankedResult


@lru_cache(maxsize=4)
def _encoding(name: str) -> tiktoken.Encoding:
    return tiktoken.get_encoding(name)


def measure(
    text: str,
    unit: Literal["tokens", "chars"] = "tokens",
    encoding: str = "cl100k_base",
) -> int:
    if unit == "chars":
        return len(text)
    return len(_encoding(encoding).encode(text, disallowed_special=()))


@dataclass
class AssembledContext:
    text: str = ""
    refs: list[str] = field(default_factory=list)
    used: int = 0


def assemble_context(
    results: Sequence[RerankedResult],
    budget: int,
    unit: Literal["tokens", "chars"] = "tokens",
    separator: str = "\n\n",
    encoding: str = "cl100k_base",
) -> AssembledContext:
    """Concatenate result texts in rank order until the budget is exhausted.

    Texts are never cut: assembly stops at the first result that would not
    fit. Separators count toward the budget.
    """
    assembled = AssembledContext()
    if budget <= 0:
        return assembled

    parts: list[str] = []
    separator_cost = measure(separator, unit, encoding) if separator else 0
    for result in results:
        if not result.text:
            continue
        cost = measure(result.text, unit, encoding)
        if parts:
            cost += separator_cost
        if assembled.used + cost > budget:
            break
        parts.append(result.text)
        assembled.refs.append(result.ref)
        assembled.used += cost

    assembled.text = separator.join(parts)
    return assembled
