"""
matrix.py
~~~~~~~~~

Dense row-major matrix used by the network engine.

The buffer is a typed ``array.array`` so that allocation sizes are exact
and the element type is fixed per matrix (``'f'`` for 32-bit floats,
``'d'`` for 64-bit floats, ``'i'``/``'l'`` for integers). All arithmetic
is shape-checked and done with plain Python loops; there is
no dependency on a linear algebra library here.
"""

import operator
from array import array
from typing import (
    TYPE_CHECKING, Callable, Generic, Iterable, List, Optional, Sequence,
    Tuple, TypeVar
)

from .errors import AllocationError, ShapeMismatch

if TYPE_CHECKING:
    from .arena import MatrixArena

T = TypeVar('T', int, float)
R = TypeVar('R', int, float)

# Element type of every network parameter and activation
DEFAULT_TYPECODE = 'f'


def _allocate(typecode: str, length: int) -> array:
    """Return a zero-filled buffer of ``length`` elements."""
    try:
        itemsize = array(typecode).itemsize
        return array(typecode, bytes(itemsize * length))
    except (MemoryError, OverflowError) as e:
        raise AllocationError(
            f"Could not allocate {length} elements of type '{typecode}'"
        ) from e


class Matrix(Generic[T]):
    """
    A ``rows x cols`` matrix stored row-major in ``data``.

    The invariant ``len(data) == rows * cols`` holds for the whole
    lifetime of the object; a released matrix is 0x0.
    """

    __slots__ = ('rows', 'cols', 'typecode', 'data')

    def __init__(
        self,
        rows: int,
        cols: int,
        typecode: str = DEFAULT_TYPECODE,
        data: Optional[Iterable[T]] = None
    ):
        """
        Allocate a matrix.

        Args:
            rows: Number of rows
            cols: Number of columns
            typecode: ``array`` typecode of the elements
            data: Optional row-major initial values (rows * cols of them)

        Raises:
            ValueError: If a dimension is negative
            ShapeMismatch: If ``data`` holds the wrong number of values
            AllocationError: If the buffer cannot be allocated
        """
        if rows < 0 or cols < 0:
            raise ValueError(f"Invalid matrix shape {rows}x{cols}")

        self.rows = rows
        self.cols = cols
        self.typecode = typecode

        if data is None:
            self.data = _allocate(typecode, rows * cols)
            return

        try:
            buffer = array(typecode, data)
        except MemoryError as e:
            raise AllocationError(
                f"Could not allocate {rows}x{cols} matrix"
            ) from e
        if len(buffer) != rows * cols:
            raise ShapeMismatch(
                f"{len(buffer)} values do not fill a {rows}x{cols} matrix"
            )
        self.data = buffer

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zeros(
        cls,
        rows: int,
        cols: int,
        typecode: str = DEFAULT_TYPECODE,
        arena: Optional['MatrixArena'] = None
    ) -> 'Matrix':
        """Allocate a zero-filled matrix, tracked by ``arena`` if given."""
        matrix = cls(rows, cols, typecode)
        if arena is not None:
            arena.track(matrix)
        return matrix

    @classmethod
    def from_rows(
        cls,
        rows: Sequence[Sequence[T]],
        typecode: str = DEFAULT_TYPECODE
    ) -> 'Matrix':
        """
        Build a matrix from a list of equally long rows.

        Example:
            >>> Matrix.from_rows([[1, 2], [3, 4]], 'i').shape
            (2, 2)
        """
        n_rows = len(rows)
        n_cols = len(rows[0]) if n_rows else 0
        if any(len(row) != n_cols for row in rows):
            raise ShapeMismatch("Rows have different lengths")
        return cls(n_rows, n_cols, typecode,
                   data=[x for row in rows for x in row])

    @classmethod
    def column(
        cls,
        values: Iterable[T],
        typecode: str = DEFAULT_TYPECODE,
        arena: Optional['MatrixArena'] = None
    ) -> 'Matrix':
        """Build an ``n x 1`` column vector."""
        buffer = array(typecode, values)
        return cls.from_buffer(len(buffer), 1, buffer, arena)

    @classmethod
    def from_buffer(
        cls,
        rows: int,
        cols: int,
        buffer: array,
        arena: Optional['MatrixArena'] = None
    ) -> 'Matrix':
        """Adopt ``buffer`` without copying it."""
        if len(buffer) != rows * cols:
            raise ShapeMismatch(
                f"{len(buffer)} values do not fill a {rows}x{cols} matrix"
            )
        matrix = cls.__new__(cls)
        matrix.rows = rows
        matrix.cols = cols
        matrix.typecode = buffer.typecode
        matrix.data = buffer
        if arena is not None:
            arena.track(matrix)
        return matrix

    def clone(self, arena: Optional['MatrixArena'] = None) -> 'Matrix':
        """Deep copy with an independent buffer."""
        return Matrix.from_buffer(self.rows, self.cols, array(self.typecode, self.data), arena)

    def release(self) -> None:
        """Drop the buffer. The matrix becomes 0x0."""
        self.data = array(self.typecode)
        self.rows = 0
        self.cols = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    @property
    def size(self) -> int:
        return self.rows * self.cols

    def to_rows(self) -> List[List[T]]:
        return [
            self.data[r * self.cols:(r + 1) * self.cols].tolist()
            for r in range(self.rows)
        ]

    def _index(self, key: Tuple[int, int]) -> int:
        row, col = key
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError(
                f"Index ({row}, {col}) out of range for "
                f"{self.rows}x{self.cols} matrix"
            )
        return row * self.cols + col

    def __getitem__(self, key: Tuple[int, int]) -> T:
        return self.data[self._index(key)]

    def __setitem__(self, key: Tuple[int, int], value: T) -> None:
        self.data[self._index(key)] = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and self.data == other.data

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"Matrix({self.rows}x{self.cols}, typecode='{self.typecode}')"

    def __str__(self) -> str:
        return ''.join(
            '[ ' + ', '.join(str(x) for x in row) + ' ]\n'
            for row in self.to_rows()
        )

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _check_same_shape(self, other: 'Matrix', op: str) -> None:
        if self.shape != other.shape:
            raise ShapeMismatch(
                f"Cannot {op} {other.rows}x{other.cols} and "
                f"{self.rows}x{self.cols} matrices"
            )

    def _combine(self, other: 'Matrix', func: Callable, op: str) -> 'Matrix':
        self._check_same_shape(other, op)
        self.data[:] = array(self.typecode, map(func, self.data, other.data))
        return self

    def add(self, other: 'Matrix') -> 'Matrix':
        """In-place elementwise ``self += other``."""
        return self._combine(other, operator.add, 'add')

    def sub(self, other: 'Matrix') -> 'Matrix':
        """In-place elementwise ``self -= other``."""
        return self._combine(other, operator.sub, 'subtract')

    def mul_elem(self, other: 'Matrix') -> 'Matrix':
        """In-place Hadamard product."""
        return self._combine(other, operator.mul, 'multiply elementwise')

    def mul_scalar(self, scalar: T) -> 'Matrix':
        """In-place scaling of every element."""
        self.data[:] = array(self.typecode, (x * scalar for x in self.data))
        return self

    def transpose(self, arena: Optional['MatrixArena'] = None) -> 'Matrix':
        """Return a new ``cols x rows`` matrix."""
        buffer = array(self.typecode)
        for col in range(self.cols):
            buffer.extend(self.data[col::self.cols])
        return Matrix.from_buffer(self.cols, self.rows, buffer, arena)

    def map(
        self,
        func: Callable[[T], R],
        typecode: Optional[str] = None,
        arena: Optional['MatrixArena'] = None
    ) -> 'Matrix':
        """
        Apply ``func`` to every element.

        Args:
            func: Elementwise function
            typecode: Element type of the result, defaults to this matrix's
            arena: Optional arena to track the result

        Returns:
            New matrix of the same shape
        """
        buffer = array(typecode or self.typecode, map(func, self.data))
        return Matrix.from_buffer(self.rows, self.cols, buffer, arena)

    def dot(self, other: 'Matrix') -> T:
        """Inner product of both matrices read as flat vectors."""
        if self.size != other.size:
            raise ShapeMismatch(
                f"Cannot take dot product of {self.size} and "
                f"{other.size} elements"
            )
        return sum(map(operator.mul, self.data, other.data))

    def __matmul__(self, other: 'Matrix') -> 'Matrix':
        return matmul(self, other)


def matmul(
    a: Matrix,
    b: Matrix,
    arena: Optional['MatrixArena'] = None
) -> Matrix:
    """
    Matrix product ``a · b``.

    ``result[i, j]`` is the sum over ``k`` of ``a[i, k] * b[k, j]``,
    accumulated in order of ``k``. The result has ``a``'s element type.

    Raises:
        ShapeMismatch: If ``a.cols != b.rows``
    """
    if a.cols != b.rows:
        raise ShapeMismatch(
            f"Cannot multiply {a.rows}x{a.cols} by {b.rows}x{b.cols} matrix"
        )

    n, p = a.cols, b.cols
    columns = [b.data[j::p] for j in range(p)]
    rows = [a.data[i * n:(i + 1) * n] for i in range(a.rows)]
    buffer = array(a.typecode, (
        sum(map(operator.mul, row, col))
        for row in rows
        for col in columns
    ))
    return Matrix.from_buffer(a.rows, p, buffer, arena)
