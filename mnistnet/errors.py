"""
errors.py
~~~~~~~~~

Exception types raised by the matrix engine, the network and the file
readers.
"""


class MnistNetError(Exception):
    """Base class for all errors raised by this package."""


class ShapeMismatch(MnistNetError):
    """Operand shapes are incompatible for the requested operation."""


class AllocationError(MnistNetError):
    """A matrix buffer could not be allocated."""


class InvalidFormat(MnistNetError):
    """A weight or dataset file does not have the expected layout."""


class UnexpectedEndOfData(MnistNetError):
    """A weight or dataset file ended before all fields were read."""
