import logging
import threading

from trellis.retrieval.store.models import RaptorTree

logger = logging.getLogger(__name__)


class RaptorTreeIndex:
    """Holds the current RAPTOR tree snapshot.

    Readers call snapshot() without locking and keep the returned tree for
    the rest of their query. publish() swaps in a fully built tree with the
    next version number in a single reference assignment, so no reader ever
    sees a partially built tree.
    """

    def __init__(self, tree: RaptorTree | None = None):
        self._tree = tree if tree is not None else RaptorTree()
        self._publish_lock = threading.Lock()

    @property
    def version(self) -> int:
        return self._tree.version

    def snapshot(self) -> RaptorTree:
        return self._tree

    def publish(self, tree: RaptorTree) -> RaptorTree:
        """Publish a new tree, returning it with its assigned version."""
        with self._publish_lock:
            published = tree.with_version(self._tree.version + 1)
            self._tree = published
        logger.info(
            f"Published RAPTOR tree version {published.version} "
            f"({len(published)} nodes, {len(published.roots)} roots)"
        )
        return published
