"""
Matchers for broker messages and log lines.

- Matcher / MatcherHandle: predicate registrations owned by a TopicListener
- LogMatcher / LogListener: occurrence-counting matchers over log lines
"""

from outputmatcher.matchers.log import LinePattern, LogListener, LogMatcher
from outputmatcher.matchers.matcher import Matcher, MatcherHandle, MatcherState

__all__ = [
    "Matcher",
    "MatcherHandle",
    "MatcherState",
    "LinePattern",
    "LogListener",
    "LogMatcher",
]
