from pydantic import BaseModel, ConfigDict, Field


class Chunk(BaseModel):
    """
    Atomic unit of indexed text with its own embedding. Immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    embedding: list[float]
    doc_id: str | None = None
    metadata: dict = Field(default_factory=dict)
