"""
Synchronous access to the verification harness.

For test suites that are not async: the harness runs on a background event
loop thread and every call blocks.

Example:
    >>> from outputmatcher.channels import InMemoryChannel
    >>> from outputmatcher.sync import SyncVerificationHarness
    >>>
    >>> harness = SyncVerificationHarness()
    >>> harness.add_channel(InMemoryChannel("uppercase.out"))
    >>> with harness:
    ...     harness.wait_for(equals("HELLO WORLD"))
"""

from outputmatcher.sync.runner import SyncVerificationHarness

__all__ = ["SyncVerificationHarness"]
