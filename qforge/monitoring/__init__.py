# qforge/monitoring/__init__.py
"""
提供优化会话的监控和可视化工具。

Provides monitoring and visualization tools for optimization sessions.
"""

from .progress_tracker import (
    OptimizationTracker,
    LiveProgressMonitor,
    PLOTTING_AVAILABLE,
)

__all__ = [
    "OptimizationTracker",
    "LiveProgressMonitor",
    "PLOTTING_AVAILABLE",
]
