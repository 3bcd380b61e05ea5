from trellis.retrieval.store.models.chunk import Chunk
from trellis.retrieval.store.models.document import Document
from trellis.retrieval.store.models.raptor import RaptorNode, RaptorTree

__all__ = ["Chunk", "Document", "RaptorNode", "RaptorTree"]
