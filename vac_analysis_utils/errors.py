"""
Exception hierarchy for the VAC reading-time analysis

Loader errors abort the whole run, transform and comparison errors abort a
single response-variable pipeline. Fitting problems are never raised; they
are recorded as flags on the fitted model.
"""


class AnalysisError(Exception):
    """Base class for all analysis errors"""


# Loader


class LoaderError(AnalysisError):
    """Raised while loading or validating the raw dataset"""


class SchemaError(LoaderError, KeyError):
    """A required column is missing"""

    def __str__(self):
        # KeyError quotes its message otherwise
        return str(self.args[0]) if self.args else ""


class ColumnTypeError(LoaderError, TypeError):
    """A numeric column holds non-numeric values"""


class ConstraintError(LoaderError, ValueError):
    """A row violates a data constraint (RT_raw <= 0, duplicate key, missing value)"""


# Transform


class TransformError(AnalysisError):
    """Raised by the transform stage"""


class DomainError(TransformError, ValueError):
    """Log-transform applied to a non-positive reading time"""


class UnknownLevelError(TransformError, ValueError):
    """A label is not covered by the contrast mapping"""


class ContrastBalanceError(TransformError, ValueError):
    """Contrast codes do not sum to zero across conditions"""


class EmptyResultError(TransformError):
    """A region filter matched no rows"""


# Comparison


class ComparisonError(AnalysisError):
    """Raised by model comparison and reporting"""


class DegenerateComparisonError(ComparisonError):
    """Consecutive models are not properly nested (df does not increase)"""


class ProfileError(ComparisonError):
    """A coefficient cannot be profiled"""
