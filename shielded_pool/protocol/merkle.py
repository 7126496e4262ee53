"""
Fixed-depth append-only Merkle accumulator with bounded root history.

Leaves are note commitments in insertion order. Unused slots hold a constant
zero value; the zero subtree hashes for every level are derived once at
construction. Each batch insertion recomputes only the nodes on the paths of
the new leaves and pushes the resulting root into a FIFO of the last K roots.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import FIELD_SIZE, MERKLE_TREE_HEIGHT, ROOT_HISTORY_SIZE, ZERO_VALUE
from .exceptions import CommitmentNotFound, TreeFull
from .hashing import get_default_hasher
from .interfaces import FieldHasher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MerklePath:
    """
    Authentication path for one leaf.

    Attributes:
        index: Leaf position; bit i is 1 when the node at level i is a right child
        path_elements: Sibling hashes from the leaf level up to just below the root
    """

    index: int
    path_elements: Tuple[int, ...]

    @property
    def path_indices(self) -> Tuple[int, ...]:
        return tuple((self.index >> level) & 1 for level in range(len(self.path_elements)))

    def compute_root(self, leaf: int, hasher: Optional[FieldHasher] = None) -> int:
        hasher = hasher or get_default_hasher()
        current = leaf
        for level, sibling in enumerate(self.path_elements):
            if (self.index >> level) & 1:
                current = hasher.hash_pair(sibling, current)
            else:
                current = hasher.hash_pair(current, sibling)
        return current


def zero_path(height: int = MERKLE_TREE_HEIGHT) -> MerklePath:
    """Synthetic all-zero path used for zero-amount (padding) inputs."""
    return MerklePath(index=0, path_elements=(0,) * height)


def verify_path(
    leaf: int, path: MerklePath, root: int, hasher: Optional[FieldHasher] = None
) -> bool:
    """
    Verify a Merkle authentication path.

    Returns:
        True if hashing leaf up along path yields root, False otherwise
    """
    return path.compute_root(leaf, hasher) == root


class MerkleAccumulator:
    """
    Append-only commitment tree of height H holding up to 2^H leaves.

    Example:
        >>> tree = MerkleAccumulator(height=5)
        >>> root = tree.insert_batch([c1, c2])
        >>> index, path = tree.path_to(c1)
        >>> assert tree.is_known_root(root)
    """

    def __init__(
        self,
        height: int = MERKLE_TREE_HEIGHT,
        hasher: Optional[FieldHasher] = None,
        root_history_size: int = ROOT_HISTORY_SIZE,
        zero_value: int = ZERO_VALUE,
    ) -> None:
        if height < 1:
            raise ValueError("height must be >= 1")
        if root_history_size < 1:
            raise ValueError("root_history_size must be >= 1")

        self._height = height
        self._hasher = hasher or get_default_hasher()
        self._root_history_size = root_history_size

        self._zeros: List[int] = [zero_value]
        for _ in range(height):
            self._zeros.append(self._hasher.hash_pair(self._zeros[-1], self._zeros[-1]))

        # _layers[0] are the leaves, _layers[height] holds at most the root
        self._layers: List[List[int]] = [[] for _ in range(height + 1)]
        self._index: Dict[int, int] = {}
        self._roots: Deque[int] = deque([self._zeros[height]], maxlen=root_history_size)

    @classmethod
    def from_leaves(
        cls,
        leaves: Iterable[int],
        height: int = MERKLE_TREE_HEIGHT,
        hasher: Optional[FieldHasher] = None,
        root_history_size: int = ROOT_HISTORY_SIZE,
        root_history: Optional[Sequence[int]] = None,
    ) -> "MerkleAccumulator":
        """
        Rebuild an accumulator from an ordered leaf sequence.

        root_history, when given, replaces the rebuilt history and must end
        with the rebuilt root.
        """
        tree = cls(height=height, hasher=hasher, root_history_size=root_history_size)
        leaves = list(leaves)
        if leaves:
            tree.insert_batch(leaves)
        if root_history:
            if root_history[-1] != tree.root:
                raise ValueError("root history does not end with the rebuilt root")
            tree._roots = deque(root_history, maxlen=root_history_size)
        return tree

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    @property
    def height(self) -> int:
        return self._height

    @property
    def hasher(self) -> FieldHasher:
        return self._hasher

    @property
    def capacity(self) -> int:
        return 2**self._height

    @property
    def size(self) -> int:
        return len(self._layers[0])

    @property
    def next_index(self) -> int:
        return self.size

    @property
    def leaves(self) -> Tuple[int, ...]:
        return tuple(self._layers[0])

    @property
    def zeros(self) -> Tuple[int, ...]:
        return tuple(self._zeros)

    @property
    def root(self) -> int:
        top = self._layers[self._height]
        return top[0] if top else self._zeros[self._height]

    @property
    def root_history(self) -> Tuple[int, ...]:
        """Known roots, oldest first; the last entry is the current root."""
        return tuple(self._roots)

    # ========================================================================
    # INSERTION
    # ========================================================================

    def can_insert(self, count: int) -> bool:
        return self.size + count <= self.capacity

    def insert_batch(self, commitments: Sequence[int]) -> int:
        """
        Append commitments at the next free indices and update the root.

        Args:
            commitments: Field elements, inserted in the given order

        Returns:
            The new root

        Raises:
            ValueError: If the batch is empty or holds a non-field element
            TreeFull: If the batch does not fit
        """
        batch = list(commitments)
        if not batch:
            raise ValueError("cannot insert an empty batch")
        for commitment in batch:
            if not isinstance(commitment, int) or not 0 <= commitment < FIELD_SIZE:
                raise ValueError("commitment must be a field element")
        if not self.can_insert(len(batch)):
            raise TreeFull(
                f"tree of height {self._height} cannot fit {len(batch)} more leaves"
            )

        start = self.size
        leaves = self._layers[0]
        for offset, commitment in enumerate(batch):
            leaves.append(commitment)
            self._index.setdefault(commitment, start + offset)

        first, last = start, start + len(batch) - 1
        for level in range(self._height):
            current = self._layers[level]
            parents = self._layers[level + 1]
            for parent_index in range(first >> 1, (last >> 1) + 1):
                left = current[2 * parent_index]
                right_index = 2 * parent_index + 1
                right = current[right_index] if right_index < len(current) else self._zeros[level]
                node = self._hasher.hash_pair(left, right)
                if parent_index < len(parents):
                    parents[parent_index] = node
                else:
                    parents.append(node)
            first >>= 1
            last >>= 1

        root = self.root
        self._roots.append(root)
        logger.debug("inserted %d leaves at index %d", len(batch), start)
        return root

    # ========================================================================
    # QUERIES
    # ========================================================================

    def index_of(self, commitment: int) -> int:
        """
        Raises:
            CommitmentNotFound: If commitment is not a leaf
        """
        try:
            return self._index[commitment]
        except KeyError:
            raise CommitmentNotFound(f"commitment {commitment:#x} not in tree") from None

    def leaf(self, index: int) -> int:
        if not 0 <= index < self.size:
            raise IndexError(f"leaf index {index} out of range")
        return self._layers[0][index]

    def path(self, index: int) -> MerklePath:
        """Authentication path for the leaf at index."""
        if not 0 <= index < self.size:
            raise IndexError(f"leaf index {index} out of range")
        elements = []
        position = index
        for level in range(self._height):
            layer = self._layers[level]
            sibling = position ^ 1
            elements.append(layer[sibling] if sibling < len(layer) else self._zeros[level])
            position >>= 1
        return MerklePath(index=index, path_elements=tuple(elements))

    def path_to(self, commitment: int) -> MerklePath:
        """
        Locate a commitment and return its authentication path.

        Raises:
            CommitmentNotFound: If commitment is not a leaf
        """
        return self.path(self.index_of(commitment))

    def is_known_root(self, root: int) -> bool:
        """True if root is the current root or one of the last K roots."""
        if root == 0:
            return False
        return root in self._roots

    def copy(self) -> "MerkleAccumulator":
        """Independent snapshot; later insertions do not affect the copy."""
        clone = MerkleAccumulator.__new__(MerkleAccumulator)
        clone._height = self._height
        clone._hasher = self._hasher
        clone._root_history_size = self._root_history_size
        clone._zeros = list(self._zeros)
        clone._layers = [list(layer) for layer in self._layers]
        clone._index = dict(self._index)
        clone._roots = deque(self._roots, maxlen=self._root_history_size)
        return clone
