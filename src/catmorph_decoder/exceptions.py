"""Exceptions for inputs that make a subject's sweep impossible.

Numerical degeneracy (constant predictions, failed factorisations) is not
an exception: it becomes NaN in the result tensor.
"""

from __future__ import annotations


class InputDataError(ValueError):
    """Malformed input: wrong shape, length mismatch, empty ROI, unknown morph."""
