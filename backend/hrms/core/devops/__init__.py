"""
DevOps Dashboard Core
=====================

Provider event parsing and normalization, approval writes, feature flag
evaluation, and the GitHub REST client.
"""

from hrms.core.devops.events import InvalidEventPayload, UnsupportedEvent, parse_event
from hrms.core.devops.github import GitHubAPIError, GitHubClient, GitHubNotConfigured, map_run_status
from hrms.core.devops.normalizer import EventNormalizer, NormalizationResult, create_pipeline

__all__ = [
    "EventNormalizer",
    "GitHubAPIError",
    "GitHubClient",
    "GitHubNotConfigured",
    "InvalidEventPayload",
    "NormalizationResult",
    "UnsupportedEvent",
    "create_pipeline",
    "map_run_status",
    "parse_event",
]
