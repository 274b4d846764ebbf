"""Profiling subsystem — run the game once and reduce its telemetry.

Typical usage::

    from src.profiling import (
        GameSession, PerformanceExtractor, TraceCollector, load_profile_config,
    )

    config = load_profile_config("my-game")
    session = GameSession.from_config(
        config,
        sink,
        trace_collector=TraceCollector.from_config(config, sink),
        performance_extractor=PerformanceExtractor.from_config(config, sink),
    )
    session.run()   # launch, wait for exit, collect traces + CSV summaries
"""

from src.profiling.config import ProfileConfig, load_profile_config
from src.profiling.game_session import GameSession, GameSessionError, GameSessionState
from src.profiling.performance import PerformanceExtractor
from src.profiling.summary import (
    MetricSummary,
    PerformanceSample,
    PerformanceSummary,
    percentile,
    summarize,
)
from src.profiling.traces import TraceArchiver, TraceArtifact, TraceCollector

__all__ = [
    "GameSession",
    "GameSessionError",
    "GameSessionState",
    "MetricSummary",
    "PerformanceExtractor",
    "PerformanceSample",
    "PerformanceSummary",
    "ProfileConfig",
    "TraceArchiver",
    "TraceArtifact",
    "TraceCollector",
    "load_profile_config",
    "percentile",
    "summarize",
]
