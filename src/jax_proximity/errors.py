"""Exception types raised by jax_proximity."""


class ProximityError(Exception):
    """Base class for errors raised by this package."""


class DimensionMismatchError(ProximityError, ValueError):
    """A configuration vector does not have ``robot.num_dofs`` entries."""

    def __init__(self, expected: int, got: int):
        super().__init__(f"Expected a configuration of length {expected}, got {got}")
        self.expected = expected
        self.got = got


class ConfigurationError(ProximityError):
    """A required precomputed table (skips, statistics, error model) is missing or mismatched."""


class ShapeQueryFailure(ProximityError, RuntimeError):
    """The narrow phase failed or produced a non-finite result for a shape pair."""

    def __init__(self, message: str, shape_indices=None):
        super().__init__(message)
        self.shape_indices = shape_indices
