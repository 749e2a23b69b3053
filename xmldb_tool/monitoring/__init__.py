"""
Monitoring module for the XML/relational bridge.

Provides performance monitoring and metrics collection for import and export runs.
"""

from .performance_monitor import PerformanceMonitor, RunMetrics

__all__ = [
    'PerformanceMonitor',
    'RunMetrics'
]
