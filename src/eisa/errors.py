"""
Exceptions and warning categories raised by the EISA pipeline.

Input-shape and policy errors are raised before any computation happens.
Statistical preconditions that can be worked around (too few replicates,
a pseudocount that deviates from the published method) are reported as
warnings instead.
"""
from __future__ import annotations


class EISAError(Exception):
    """Base class for all errors raised by :mod:`eisa`."""


class ShapeError(EISAError, ValueError):
    """Exonic and intronic count matrices are malformed or of different shape."""


class IdentifierMismatchError(EISAError, ValueError):
    """Row or column identifiers differ between exonic and intronic counts."""


class ConditionCardinalityError(EISAError, ValueError):
    """The condition vector does not define exactly two groups over all samples."""


class InvalidPolicyError(EISAError, ValueError):
    """A configuration option lies outside its allowed set of values."""


class NormalizationError(EISAError, ValueError):
    """Normalization factors could not be computed (e.g. an all-zero column)."""


class DesignRankError(EISAError, ValueError):
    """The design matrix is not of full column rank."""


class EmptySelectionError(EISAError, ValueError):
    """No gene passed the quantifiable-gene filter."""


class MissingFitError(EISAError, RuntimeError):
    """A model-based effect was requested but no model was fitted."""


class EISAWarning(UserWarning):
    """Base class for warnings issued by :mod:`eisa`."""


class PseudocountMismatchWarning(EISAWarning):
    """The pseudocount differs from the value used by the published method."""


class ReplicationWarning(EISAWarning):
    """Too few replicates per condition to run the statistical analysis."""
