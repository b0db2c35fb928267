"""Tiered recomputation workers.

Tiers:
    instant     paragraph-local reclassification, inline
    debounced   structure, delta and entity update after a short delay
    background  full recompute in a worker thread, time capped
"""

from manuscript_intel.workers.scheduler import PipelineAnalyzer, TieredScheduler

__all__ = [
    "PipelineAnalyzer",
    "TieredScheduler",
]
