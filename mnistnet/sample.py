"""
sample.py
~~~~~~~~~

The capability every labeled training example provides to the network.
"""

from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from .matrix import Matrix

if TYPE_CHECKING:
    from .arena import MatrixArena


@runtime_checkable
class Sample(Protocol):
    """
    A labeled example.

    ``label`` is the index of the hot component of the target vector and
    is what predictions are compared against during evaluation.
    """

    label: int

    def to_input(self, arena: Optional['MatrixArena'] = None) -> Matrix:
        """Input column vector, as wide as the network's first layer."""
        ...

    def to_target(self, arena: Optional['MatrixArena'] = None) -> Matrix:
        """Desired output column vector, as wide as the last layer."""
        ...

    def cost(self, output: Matrix) -> float:
        """Quadratic cost of ``output`` against the target."""
        ...
