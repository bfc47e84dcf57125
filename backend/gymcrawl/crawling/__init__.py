"""
Crawling core: sources, orchestration, scheduling and fusion
"""

from .orchestrator import SearchOrchestrator, merge_observations

__all__ = ["SearchOrchestrator", "merge_observations"]
