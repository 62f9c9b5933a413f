"""
Reconciliation engine.

Computes the directory mutations needed to converge one record at a time.
The engine never talks to the directory itself; it returns a Plan of
Mutation intents plus diagnostics for the orchestrator to apply.

Pass A walks the roster and plans creates and updates. Pass B walks the
directory records with no roster counterpart and plans deactivations.
"""

import logging
import secrets
from datetime import datetime
from typing import Dict, Any, Callable, Optional

from roster_sync.models import (
    RosterRecord,
    DirectoryRecord,
    Mutation,
    MutationKind,
    Plan,
    SyncErrorRecord,
)
from roster_sync.normalizer import EXTERNAL_ID_TYPE
from roster_sync.policy import SuspensionPolicy, get_policy

logger = logging.getLogger(__name__)

PASSWORD_BYTES = 24


def generate_password() -> str:
    """One-time random password for a new account."""
    return secrets.token_urlsafe(PASSWORD_BYTES)


class ReconciliationEngine:
    """
    Decision engine for roster to directory reconciliation.

    Uses the ``sync`` configuration section for org units, the email update
    toggle and the roster sanity threshold.
    """

    def __init__(self, sync_config: Dict[str, Any],
                 policy: Optional[SuspensionPolicy] = None,
                 now: Optional[Callable[[], datetime]] = None):
        org_units = sync_config.get('org_units', {})
        self.assigned_unit = org_units.get('assigned', '/Users/Assigned')
        self.default_unit = org_units.get('default', '/Users')
        self.disabled_unit = org_units.get('disabled', '/Disabled')
        self.apply_email_updates = sync_config.get('apply_email_updates', False)
        self.min_safe_user_count = sync_config.get('min_safe_user_count', 1000)
        self.policy = policy or get_policy(sync_config.get('grace_period_enabled', True))
        self._now = now or datetime.now

    def now(self) -> datetime:
        return self._now()

    def target_org_unit(self, roster: RosterRecord) -> str:
        return self.assigned_unit if roster.is_org_assigned else self.default_unit

    # Pass A

    def plan_roster_record(self, roster: RosterRecord, record: Optional[DirectoryRecord]) -> Plan:
        """
        Plan the mutations for one roster record.

        Args:
            roster: Roster record
            record: Matching directory record, or None if the account is missing

        Returns:
            Plan with mutations in check order (lock, email, name, org unit)
        """
        if record is None:
            return self._plan_create(roster)

        plan = Plan()
        now = self.now()

        if not record.is_managed:
            if record.is_expired(now):
                plan.warnings.append(
                    f"{roster.external_id} ({record.primary_address}) is not managed by sync "
                    f"but expired on {record.account_expire_date}"
                )
            logger.info(f"Skipping {roster.external_id} ({record.primary_address}): not managed by sync")
            return plan

        self._check_suspension(roster, record, now, plan)
        self._check_primary_address(roster, record, plan)
        self._check_names(roster, record, plan)
        self._check_org_unit(roster, record, plan)
        return plan

    def _plan_create(self, roster: RosterRecord) -> Plan:
        plan = Plan()
        if '@' not in roster.sync_email:
            plan.errors.append(SyncErrorRecord(
                roster.external_id,
                MutationKind.CREATE.value,
                f"invalid sync email '{roster.sync_email}' for {roster.display_name or roster.user_name}",
            ))
            return plan

        body = {
            'primaryEmail': roster.sync_email.lower(),
            'name': {
                'givenName': roster.given_name,
                'familyName': roster.last_name,
            },
            'externalIds': [{'type': EXTERNAL_ID_TYPE, 'value': roster.external_id}],
            'orgUnitPath': self.target_org_unit(roster),
            'suspended': roster.is_locked,
            'password': generate_password(),
            'includeInGlobalAddressList': False,
        }
        plan.mutations.append(Mutation(
            kind=MutationKind.CREATE,
            external_id=roster.external_id,
            changes=body,
            reason='not found in directory',
        ))
        return plan

    def _check_suspension(self, roster: RosterRecord, record: DirectoryRecord, now: datetime, plan: Plan):
        target = self.policy.target_suspended(roster.is_locked, record, now)
        if target == record.suspended:
            return

        if target:
            reason = 'locked in roster' if roster.is_locked else f'expired on {record.account_expire_date}'
            plan.mutations.append(Mutation(
                kind=MutationKind.SUSPEND,
                external_id=roster.external_id,
                user_key=record.user_key,
                changes={'suspended': True},
                reason=reason,
            ))
            return

        if not record.suspension_reason:
            plan.warnings.append(
                f"Not reactivating {roster.external_id} ({record.primary_address}): "
                f"suspended without a suspension reason"
            )
            return

        reason = 'active in roster'
        if roster.is_locked:
            reason = f'forced active until {record.account_expire_date}'
        plan.mutations.append(Mutation(
            kind=MutationKind.REACTIVATE,
            external_id=roster.external_id,
            user_key=record.user_key,
            changes={'suspended': False},
            reason=reason,
        ))

    def _check_primary_address(self, roster: RosterRecord, record: DirectoryRecord, plan: Plan):
        wanted = roster.sync_email.lower()
        if not wanted or wanted == record.primary_address.lower():
            return

        if not self.apply_email_updates:
            logger.info(f"Primary address differs for {roster.external_id}: "
                        f"'{record.primary_address}' vs roster '{roster.sync_email}' (email updates disabled)")
            return

        if '@' not in wanted:
            plan.warnings.append(f"Not updating {roster.external_id}: invalid sync email '{roster.sync_email}'")
            return

        plan.mutations.append(Mutation(
            kind=MutationKind.UPDATE_EMAIL,
            external_id=roster.external_id,
            user_key=record.user_key,
            changes={'primaryEmail': wanted},
            reason=f"was {record.primary_address}",
        ))

    def _check_names(self, roster: RosterRecord, record: DirectoryRecord, plan: Plan):
        given = roster.given_name or record.given_name
        family = roster.last_name or record.family_name
        if given == record.given_name and family == record.family_name:
            return

        plan.mutations.append(Mutation(
            kind=MutationKind.UPDATE_NAME,
            external_id=roster.external_id,
            user_key=record.user_key,
            changes={'name': {'givenName': given, 'familyName': family}},
            reason=f"was {record.given_name} {record.family_name}",
        ))

    def _check_org_unit(self, roster: RosterRecord, record: DirectoryRecord, plan: Plan):
        target = self.target_org_unit(roster)
        if record.org_unit_path.startswith(target):
            return

        plan.mutations.append(Mutation(
            kind=MutationKind.MOVE,
            external_id=roster.external_id,
            user_key=record.user_key,
            changes={'orgUnitPath': target},
            reason=f"was {record.org_unit_path}",
        ))

    # Pass B

    def deactivation_allowed(self, roster_count: int) -> bool:
        """Deactivation only runs on a roster larger than the sanity threshold."""
        return roster_count > self.min_safe_user_count

    def plan_orphan_record(self, record: DirectoryRecord) -> Plan:
        """Plan deactivation of a directory record with no roster counterpart."""
        plan = Plan()
        now = self.now()

        if not record.is_managed:
            if record.is_expired(now):
                plan.warnings.append(
                    f"{record.external_id} ({record.primary_address}) is not managed by sync "
                    f"but expired on {record.account_expire_date}"
                )
            logger.info(f"Not deactivating {record.external_id} ({record.primary_address}): not managed by sync")
            return plan

        if self.policy.defer_deactivation(record, now):
            logger.info(f"Leaving {record.external_id} ({record.primary_address}) active "
                        f"until {record.account_expire_date}")
            return plan

        if not record.suspended:
            plan.mutations.append(Mutation(
                kind=MutationKind.SUSPEND,
                external_id=record.external_id,
                user_key=record.user_key,
                changes={'suspended': True},
                reason='not in roster',
            ))

        if not record.org_unit_path.startswith(self.disabled_unit):
            plan.mutations.append(Mutation(
                kind=MutationKind.MOVE,
                external_id=record.external_id,
                user_key=record.user_key,
                changes={'orgUnitPath': self.disabled_unit},
                reason='not in roster',
            ))

        if not plan.mutations:
            logger.info(f"{record.external_id} ({record.primary_address}) not in roster, already deactivated")
        return plan
