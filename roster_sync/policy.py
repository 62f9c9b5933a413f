"""
Suspension policies.

A policy decides the target suspended state of a matched account and
whether deactivation of an account missing from the roster should wait.
The grace-period behaviour can be switched off without touching the
reconciliation loop by selecting a different policy.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from roster_sync.models import DirectoryRecord


class SuspensionPolicy(ABC):
    """Interface for suspension decisions."""

    name = 'base'

    @abstractmethod
    def target_suspended(self, locked: bool, record: DirectoryRecord, now: datetime) -> bool:
        """
        Compute the suspended state an account should have.

        Args:
            locked: Whether the roster marks the account locked
            record: Current directory record
            now: Reference time for expiration checks

        Returns:
            True if the account should be suspended
        """

    @abstractmethod
    def defer_deactivation(self, record: DirectoryRecord, now: datetime) -> bool:
        """Whether an account missing from the roster should be left alone this run."""


class GracePeriodPolicy(SuspensionPolicy):
    """Honors accountExpireDate and forceActiveUntilExpire."""

    name = 'grace_period'

    def target_suspended(self, locked: bool, record: DirectoryRecord, now: datetime) -> bool:
        if locked:
            if record.expires_in_future(now) and record.force_active_until_expire:
                return False
            return True
        return record.is_expired(now)

    def defer_deactivation(self, record: DirectoryRecord, now: datetime) -> bool:
        return record.expires_in_future(now)


class StrictPolicy(SuspensionPolicy):
    """Roster lock state is final; no expiration handling."""

    name = 'strict'

    def target_suspended(self, locked: bool, record: DirectoryRecord, now: datetime) -> bool:
        return locked

    def defer_deactivation(self, record: DirectoryRecord, now: datetime) -> bool:
        return False


def get_policy(grace_period_enabled: bool = True) -> SuspensionPolicy:
    return GracePeriodPolicy() if grace_period_enabled else StrictPolicy()
