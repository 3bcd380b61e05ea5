from enum import StrEnum

import numpy as np

from trellis.retrieval.store.models import RaptorNode, RaptorTree


class TreeSearchMode(StrEnum):
    COLLAPSED = "collapsed"
    TRAVERSAL = "traversal"


def _cosine(query: np.ndarray, nodes: list[RaptorNode]) -> np.ndarray:
    matrix = np.array([node.embedding for node in nodes], dtype=float)
    norms = np.linalg.norm(matrix, axis=1)
    norms[norms == 0] = 1.0
    return (matrix @ query) / norms


def _normalize(query_embedding: list[float]) -> np.ndarray | None:
    query = np.asarray(query_embedding, dtype=float)
    norm = np.linalg.norm(query)
    if norm == 0:
        return None
    return query / norm


def _rank(nodes: list[RaptorNode], query: np.ndarray) -> list[tuple[str, float]]:
    if not nodes:
        return []
    similarities = _cosine(query, nodes)
    ranked = [(node.id, float(sim)) for node, sim in zip(nodes, similarities)]
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return ranked


def collapsed_search(
    tree: RaptorTree, query_embedding: list[float], k: int
) -> list[tuple[str, float]]:
    """Rank every node of every level as one flat pool.

    Synthetic aggregation roots carry no text of their own and are skipped.

    Returns:
        Up to k (node_id, similarity) pairs, best first, ties by node id.
    """
    query = _normalize(query_embedding)
    if query is None or k <= 0:
        return []
    candidates = [node for node in tree.nodes.values() if not node.synthetic]
    return _rank(candidates, query)[:k]


def traversal_search(
    tree: RaptorTree,
    query_embedding: list[float],
    k: int,
    top_k: int = 3,
) -> list[tuple[str, float]]:
    """Descend from the roots keeping the top_k most similar children per step.

    Only leaf chunks are returned. Leaves met before the bottom of the tree
    (for example chunks orphaned by a failed cluster) are collected as soon
    as they are selected.

    Returns:
        Up to k (chunk_id, similarity) pairs, best first, ties by id.
    """
    query = _normalize(query_embedding)
    if query is None or k <= 0 or tree.is_empty:
        return []

    top_k = max(1, top_k)
    selected = _rank([tree.get(root_id) for root_id in tree.roots], query)[:top_k]
    leaves: dict[str, float] = {}

    while selected:
        frontier: set[str] = set()
        for node_id, similarity in selected:
            node = tree.get(node_id)
            if node.is_leaf:
                leaves[node_id] = similarity
            else:
                frontier.update(node.children)
        if not frontier:
            break
        selected = _rank([tree.get(node_id) for node_id in frontier], query)[:top_k]

    ranked = sorted(leaves.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:k]


def search_tree(
    tree: RaptorTree,
    query_embedding: list[float],
    k: int,
    mode: TreeSearchMode = TreeSearchMode.COLLAPSED,
    top_k: int = 3,
) -> list[tuple[str, float]]:
    if mode == TreeSearchMode.TRAVERSAL:
        return traversal_search(tree, query_embedding, k, top_k=top_k)
    return collapsed_search(tree, query_embedding, k)
