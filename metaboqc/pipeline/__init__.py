"""
End-to-end processing pipeline for the metaboqc package.
"""

from metaboqc.pipeline.profiling import ProfilingPipeline, PipelineResult

__all__ = ["ProfilingPipeline", "PipelineResult"]
