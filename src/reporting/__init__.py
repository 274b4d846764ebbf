"""Reporting module — artifact sinks and performance report persistence."""

from .report import PerformanceReport, ReportGenerator
from .sink import STATUS_WINDOW, ArtifactSink, LocalArtifactSink

__all__ = [
    "ArtifactSink",
    "LocalArtifactSink",
    "PerformanceReport",
    "ReportGenerator",
    "STATUS_WINDOW",
]
