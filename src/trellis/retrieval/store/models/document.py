from pydantic import BaseModel, Field


class Document(BaseModel):
    """A source document as an ordered sequence of chunk ids."""

    id: str
    chunks: list[str] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)
