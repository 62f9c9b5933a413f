"""
Mutation applier.

Executes Mutation intents against the directory service one at a time.
A failed write is recorded in the run state and never retried; a
successful write bumps the mutation counter and is mirrored into the
in-memory directory record.
"""

import logging
from typing import Optional

from roster_sync.directory.base import DirectoryServiceBase
from roster_sync.models import DirectoryRecord, Mutation, MutationKind, RunState, SyncErrorRecord

logger = logging.getLogger(__name__)


class MutationApplier:
    """Applies intents to the directory, or only logs them in dry-run mode."""

    def __init__(self, directory: DirectoryServiceBase, apply_changes: bool = False,
                 double_count_creations: bool = False):
        self.directory = directory
        self.apply_changes = apply_changes
        self.double_count_creations = double_count_creations

    def units_for(self, mutation: Mutation) -> int:
        if mutation.kind is MutationKind.CREATE and self.double_count_creations:
            return 2
        return 1

    def apply(self, mutation: Mutation, state: RunState, record: Optional[DirectoryRecord] = None) -> bool:
        """
        Apply one intent.

        Args:
            mutation: Intent to apply
            state: Run state receiving the counter increment or the error
            record: In-memory directory record to keep in step (None for creates)

        Returns:
            True if the intent was applied (or would have been, in dry-run mode)
        """
        if not self.apply_changes:
            logger.info(f"[DRY RUN] Would {mutation.describe()}")
            state.record_mutation(mutation.kind, self.units_for(mutation))
            return True

        try:
            if mutation.kind is MutationKind.CREATE:
                self.directory.create_user(mutation.changes)
            else:
                self.directory.update_user(mutation.user_key, mutation.changes)
        except Exception as e:
            error = SyncErrorRecord(mutation.external_id, mutation.kind.value, str(e))
            state.record_error(error)
            logger.error(str(error))
            return False

        state.record_mutation(mutation.kind, self.units_for(mutation))
        logger.info(f"Applied {mutation.describe()}")

        if record is not None:
            update_record(record, mutation)
        return True


def update_record(record: DirectoryRecord, mutation: Mutation):
    """Mirror an applied update into the in-memory record."""
    changes = mutation.changes
    if 'suspended' in changes:
        record.suspended = changes['suspended']
        # The directory fills in a reason when an administrator suspends
        record.suspension_reason = 'ADMIN' if record.suspended else ''
    if 'primaryEmail' in changes:
        record.primary_address = changes['primaryEmail']
    if 'name' in changes:
        record.given_name = changes['name'].get('givenName', record.given_name)
        record.family_name = changes['name'].get('familyName', record.family_name)
    if 'orgUnitPath' in changes:
        record.org_unit_path = changes['orgUnitPath']
