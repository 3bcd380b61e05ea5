from trellis.retrieval.raptor.builder import BuildProgress, RaptorTreeBuilder
from trellis.retrieval.raptor.index import RaptorTreeIndex
from trellis.retrieval.raptor.search import (
    TreeSearchMode,
    collapsed_search,
    search_tree,
    traversal_search,
)

__all__ = [
    "BuildProgress",
    "RaptorTreeBuilder",
    "RaptorTreeIndex",
    "TreeSearchMode",
    "collapsed_search",
    "search_tree",
    "traversal_search",
]
