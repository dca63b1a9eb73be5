"""
Exception types raised by metaboqc.

``DataShapeError`` is fatal and aborts a run. The remaining errors are local to
one feature (or one partition) and are caught at the feature boundary, where
the feature is excluded and the reason recorded in the exclusion manifest.
"""


class MetaboQCError(Exception):
    """Base class for all metaboqc errors."""


class DataShapeError(MetaboQCError):
    """Matrix and covariate table do not agree, or the input is malformed."""


class EmptyPartitionError(MetaboQCError):
    """A partition has no negative-difference observations to derive a cutoff from."""


class InsufficientNeighborsError(MetaboQCError):
    """Fewer than ``k`` valid donors exist for an imputation target."""

    def __init__(self, message: str, feature_id=None, sample_id=None):
        super().__init__(message)
        self.feature_id = feature_id
        self.sample_id = sample_id


class InsufficientReplicatesError(MetaboQCError):
    """A reliability model has fewer than two effective group levels."""


class ModelFitError(MetaboQCError):
    """A variance-component fit did not converge or was singular."""
