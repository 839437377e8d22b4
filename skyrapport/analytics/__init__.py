"""
Skyrapport Analytics Module

Relationship-quality scoring over the locally synced social graph.

Modules:
- engine: Contribution aggregation, Noise and Reciprocity scores
- cache: TTL-bounded snapshot of the engine's output
"""

from skyrapport.analytics.cache import AnalyticsCache
from skyrapport.analytics.engine import AnalyticsEngine, UserContribution, UserEngagement

__all__ = ["AnalyticsCache", "AnalyticsEngine", "UserContribution", "UserEngagement"]
