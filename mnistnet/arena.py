"""
arena.py
~~~~~~~~

Scoped region for transient matrices.

Every matrix created while one mini-batch step (or one inference) runs is
registered with a ``MatrixArena``; leaving the ``with`` block releases
them all at once. Anything that must outlive the scope has to be cloned
without an arena before the block ends.
"""

import logging
from typing import List

from .matrix import DEFAULT_TYPECODE, Matrix

logger = logging.getLogger(__name__)


class MatrixArena:
    """
    Owns transient matrices and releases them in bulk.

    Example:
        >>> with MatrixArena('batch') as arena:
        ...     tmp = arena.zeros(3, 1)
        >>> tmp.shape
        (0, 0)
    """

    def __init__(self, name: str = 'arena'):
        self.name = name
        self.bytes_allocated = 0
        self._matrices: List[Matrix] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._matrices)

    def track(self, matrix: Matrix) -> Matrix:
        """
        Register ``matrix`` so it is released with the arena.

        Raises:
            RuntimeError: If the arena has already been released
        """
        if self._closed:
            raise RuntimeError(f"Arena '{self.name}' is already released")
        self._matrices.append(matrix)
        self.bytes_allocated += matrix.size * matrix.data.itemsize
        return matrix

    def zeros(self, rows: int, cols: int, typecode: str = DEFAULT_TYPECODE) -> Matrix:
        """Allocate a zero-filled matrix owned by this arena."""
        return Matrix.zeros(rows, cols, typecode, arena=self)

    def release(self) -> None:
        """Release every tracked matrix. Safe to call more than once."""
        if self._closed:
            return

        for matrix in self._matrices:
            matrix.release()

        logger.debug(
            f"Arena '{self.name}' released {len(self._matrices)} matrices "
            f"({self.bytes_allocated} bytes)"
        )
        self._matrices.clear()
        self._closed = True

    def __enter__(self) -> 'MatrixArena':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()
