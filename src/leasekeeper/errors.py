"""Exception hierarchy for leasekeeper.

Startup errors (ConfigError, ClientBuildError) are fatal and end the
process before anything is served. LeaseLockError subclasses are raised by
lock backends and handled inside the election coordinator:

- StoreUnavailableError: transient, retried at the retry cadence
- ConflictError / AlreadyExistsError: another writer won the race
"""

from __future__ import annotations


class LeasekeeperError(Exception):
    """Base exception for all leasekeeper errors."""


class ConfigError(LeasekeeperError):
    """Invalid or missing configuration."""


class ClientBuildError(LeasekeeperError):
    """The lock-store client could not be constructed."""


class ServeError(LeasekeeperError):
    """The HTTP server stopped for a reason other than a clean close."""


class InvalidTransitionError(LeasekeeperError):
    """A state machine was asked to make a transition it does not allow."""

    def __init__(self, machine: str, current: str, target: str):
        self.machine = machine
        self.current = current
        self.target = target
        super().__init__(f"{machine}: invalid transition {current} -> {target}")


class LeaseLockError(LeasekeeperError):
    """Base class for lease lock failures."""


class StoreUnavailableError(LeaseLockError):
    """The lock store could not be reached or did not answer in time."""


class ConflictError(LeaseLockError):
    """Compare-and-swap failed: the stored version differs from the expected one."""

    def __init__(self, lease: str, expected_version: str):
        self.lease = lease
        self.expected_version = expected_version
        super().__init__(f"Lease {lease} was modified (expected version {expected_version})")


class AlreadyExistsError(LeaseLockError):
    """Create failed because a record already exists."""

    def __init__(self, lease: str):
        self.lease = lease
        super().__init__(f"Lease {lease} already exists")
