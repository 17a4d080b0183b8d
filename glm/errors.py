class GLMError(Exception):
    """Root of the errors raised by the aggregation and optimization layers."""


class DimensionMismatch(GLMError, ValueError):
    """Feature, coefficient or normalization vectors disagree on their length."""


class InvalidNormalization(GLMError, ValueError):
    """The normalization would transform the intercept, or is otherwise ill-formed."""


class IncompatibleAggregator(GLMError, TypeError):
    """Two aggregators of a different kind or dimension were merged."""
