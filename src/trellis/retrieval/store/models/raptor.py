from collections.abc import Iterable, Iterator

from pydantic import BaseModel, ConfigDict, Field

from trellis.retrieval.exceptions import TreeInvariantViolation


class RaptorNode(BaseModel):
    """A node in the RAPTOR hierarchical tree.

    Level 0 nodes mirror chunks one to one and share the chunk id. Summary
    nodes (level >= 1) hold an LLM summary of their children. Relations are
    stored as id references into the owning tree's node table.

    Attributes:
        id: Unique identifier for the node
        level: Tree level (0 for chunks, 1+ for summaries)
        embedding: Vector embedding of summary_text
        summary_text: Chunk text at level 0, summary text above
        children: Ids of child nodes; empty iff level == 0
        parent: Id of the parent node, None for roots
        overlaps: Summary node ids whose summaries also drew on this node's
            text through soft cluster overlap. Not a structural relation.
        synthetic: True for a no-op aggregation root created at max depth
    """

    model_config = ConfigDict(frozen=True)

    id: str
    level: int = Field(ge=0)
    embedding: list[float]
    summary_text: str = ""
    children: frozenset[str] = frozenset()
    parent: str | None = None
    overlaps: frozenset[str] = frozenset()
    synthetic: bool = False

    @property
    def is_leaf(self) -> bool:
        return self.level == 0


class RaptorTree(BaseModel):
    """An immutable snapshot of the RAPTOR tree.

    Nodes live in a flat table keyed by id. A rebuild produces a new tree;
    published trees are never mutated.
    """

    model_config = ConfigDict(frozen=True)

    nodes: dict[str, RaptorNode] = Field(default_factory=dict)
    roots: frozenset[str] = frozenset()
    version: int = 0
    failed_clusters: int = 0
    warnings: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    @property
    def depth(self) -> int:
        """Highest level present in the tree, -1 when empty."""
        return max((n.level for n in self.nodes.values()), default=-1)

    def get(self, node_id: str) -> RaptorNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise TreeInvariantViolation(f"Unknown node id '{node_id}'") from None

    def level(self, level: int) -> list[RaptorNode]:
        return sorted(
            (n for n in self.nodes.values() if n.level == level), key=lambda n: n.id
        )

    def leaves(self) -> list[RaptorNode]:
        return self.level(0)

    def leaf_descendants(self, node_id: str) -> set[str]:
        """Ids of all level-0 nodes under node_id (node_id itself if a leaf)."""
        leaves: set[str] = set()
        for node in self._walk(node_id):
            if node.is_leaf:
                leaves.add(node.id)
        return leaves

    def _walk(self, node_id: str) -> Iterator[RaptorNode]:
        stack = [node_id]
        seen: set[str] = set()
        while stack:
            current = stack.pop()
            if current in seen:
                raise TreeInvariantViolation(f"Cycle detected at node '{current}'")
            seen.add(current)
            node = self.get(current)
            yield node
            stack.extend(sorted(node.children))

    def with_version(self, version: int) -> "RaptorTree":
        return self.model_copy(update={"version": version})

    def validate_structure(self, chunk_ids: Iterable[str] | None = None) -> None:
        """Check every structural invariant, raising TreeInvariantViolation.

        Args:
            chunk_ids: When given, the leaves must be exactly this set.
        """
        for node_id, node in self.nodes.items():
            if node_id != node.id:
                raise TreeInvariantViolation(
                    f"Node keyed '{node_id}' carries id '{node.id}'"
                )
            if node.is_leaf and node.children:
                raise TreeInvariantViolation(f"Leaf '{node.id}' has children")
            if not node.is_leaf and not node.children:
                raise TreeInvariantViolation(
                    f"Summary node '{node.id}' at level {node.level} has no children"
                )
            for child_id in node.children:
                child = self.get(child_id)
                if child.parent != node.id:
                    raise TreeInvariantViolation(
                        f"Child '{child_id}' of '{node.id}' points to parent "
                        f"'{child.parent}'"
                    )
                if child.level >= node.level:
                    raise TreeInvariantViolation(
                        f"Node '{node.id}' (level {node.level}) is not above "
                        f"child '{child_id}' (level {child.level})"
                    )
            if node.parent is None:
                if node.id not in self.roots:
                    raise TreeInvariantViolation(
                        f"Parentless node '{node.id}' is not a root"
                    )
            else:
                if node.id in self.roots:
                    raise TreeInvariantViolation(f"Root '{node.id}' has a parent")
                if node.id not in self.get(node.parent).children:
                    raise TreeInvariantViolation(
                        f"Parent '{node.parent}' does not list child '{node.id}'"
                    )

        for root_id in self.roots:
            if self.get(root_id).parent is not None:
                raise TreeInvariantViolation(f"Root '{root_id}' has a parent")

        covered: set[str] = set()
        visited = 0
        for root_id in sorted(self.roots):
            for node in self._walk(root_id):
                visited += 1
                if node.is_leaf:
                    if node.id in covered:
                        raise TreeInvariantViolation(
                            f"Leaf '{node.id}' is reachable from more than one root"
                        )
                    covered.add(node.id)
        if visited != len(self.nodes):
            raise TreeInvariantViolation(
                f"{len(self.nodes) - visited} nodes are unreachable from any root"
            )

        expected = {n.id for n in self.leaves()} if chunk_ids is None else set(chunk_ids)
        if covered != expected:
            missing = sorted(expected - covered)
            extra = sorted(covered - expected)
            raise TreeInvariantViolation(
                f"Leaf coverage mismatch (missing={missing}, unexpected={extra})"
            )
