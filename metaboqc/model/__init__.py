"""
Data models and enumerations for the metaboqc package.

This module provides:
- Feature matrix snapshots and feature sets
- Sample covariates, roles and confound groups
- The exclusion manifest
- Stage configuration dataclasses
- Scaling methods and normalization candidates
"""

from metaboqc.model.matrix import FeatureMatrix, FeatureSet
from metaboqc.model.sample import SampleRole, ConfoundGroup, CovariateTable
from metaboqc.model.manifest import ExclusionRecord, ExclusionManifest
from metaboqc.model.enums import EmptyPartitionPolicy, InsufficientNeighborsPolicy
from metaboqc.model.filters import (
    BlankFilterConfig,
    MissingnessFilterConfig,
    ImputationConfig,
    ReliabilityFilterConfig,
    NormalizationSearchConfig,
    PipelineConfig,
)
from metaboqc.model.normalization import (
    ScalingMethod,
    NormalizationCandidate,
    CandidateEvaluation,
)

__all__ = [
    # Matrix
    "FeatureMatrix",
    "FeatureSet",
    # Samples
    "SampleRole",
    "ConfoundGroup",
    "CovariateTable",
    # Manifest
    "ExclusionRecord",
    "ExclusionManifest",
    # Policies
    "EmptyPartitionPolicy",
    "InsufficientNeighborsPolicy",
    # Configuration
    "BlankFilterConfig",
    "MissingnessFilterConfig",
    "ImputationConfig",
    "ReliabilityFilterConfig",
    "NormalizationSearchConfig",
    "PipelineConfig",
    # Normalization
    "ScalingMethod",
    "NormalizationCandidate",
    "CandidateEvaluation",
]
