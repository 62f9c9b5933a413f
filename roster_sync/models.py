"""
Record and intent types shared by the reconciliation components.

Roster and directory entries are normalized into the typed records below
before any comparison happens, so the engine never reads raw field names.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Any, Optional


TRUTHY_VALUES = ('true', '1', 'yes')


def is_truthy(value: Any) -> bool:
    """Interpret boolean-ish roster values ("True", "1", 1, True)."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_VALUES


@dataclass
class RosterRecord:
    """One personnel entry from the HR roster report."""

    external_id: str
    user_name: str
    display_name: str = ''
    email: str = ''
    sync_email: str = ''
    account_locked: str = ''
    given_name: str = ''
    last_name: str = ''
    org_assignment_flag: Any = None

    @property
    def is_locked(self) -> bool:
        # Only the literal "True" locks an account
        return self.account_locked == 'True'

    @property
    def is_org_assigned(self) -> bool:
        return is_truthy(self.org_assignment_flag)


@dataclass
class DirectoryRecord:
    """A directory user that carries an organization external id."""

    external_id: str
    user_key: str
    suspended: bool = False
    suspension_reason: str = ''
    primary_address: str = ''
    given_name: str = ''
    family_name: str = ''
    full_name: str = ''
    org_unit_path: str = '/'
    workday_managed: Optional[bool] = None
    account_expire_date: Optional[date] = None
    force_active_until_expire: Optional[bool] = None
    last_login_time: Optional[str] = None

    @property
    def is_managed(self) -> bool:
        """Absent or true means managed; only an explicit false opts out."""
        return self.workday_managed is not False

    def expire_datetime(self) -> Optional[datetime]:
        if self.account_expire_date is None:
            return None
        return datetime.combine(self.account_expire_date, datetime.min.time())

    def is_expired(self, now: datetime) -> bool:
        expires_at = self.expire_datetime()
        return expires_at is not None and expires_at < now

    def expires_in_future(self, now: datetime) -> bool:
        expires_at = self.expire_datetime()
        return expires_at is not None and expires_at > now


class MutationKind(Enum):
    CREATE = 'create'
    UPDATE_EMAIL = 'update_email'
    UPDATE_NAME = 'update_name'
    SUSPEND = 'suspend'
    REACTIVATE = 'reactivate'
    MOVE = 'move'


# Keys of the create body that must never reach a log line
SECRET_FIELDS = ('password',)


@dataclass
class Mutation:
    """A single directory write the engine wants applied."""

    kind: MutationKind
    external_id: str
    changes: Dict[str, Any]
    user_key: Optional[str] = None
    reason: str = ''

    def describe(self) -> str:
        visible = {k: v for k, v in self.changes.items() if k not in SECRET_FIELDS}
        target = self.user_key or visible.get('primaryEmail', '')
        text = f"{self.kind.value} {self.external_id} ({target}): {visible}"
        if self.reason:
            text += f" - {self.reason}"
        return text


@dataclass
class SyncErrorRecord:
    external_id: str
    operation: str
    message: str

    def __str__(self) -> str:
        return f"{self.operation} failed for {self.external_id}: {self.message}"


@dataclass
class Plan:
    """Mutations and diagnostics computed for one record."""

    mutations: List[Mutation] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[SyncErrorRecord] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.mutations or self.warnings or self.errors)


@dataclass
class RunState:
    """
    Run-wide counters and accumulated diagnostics.

    Owned by the orchestrator and threaded through the applier; nothing
    else keeps run state.
    """

    mutation_count: int = 0
    errors: List[SyncErrorRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    applied: Dict[str, int] = field(default_factory=lambda: {k.value: 0 for k in MutationKind})
    failsafe_tripped: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    runtime_seconds: float = 0.0

    def record_mutation(self, kind: MutationKind, units: int = 1):
        self.mutation_count += units
        self.applied[kind.value] += 1

    def record_error(self, error: SyncErrorRecord):
        self.errors.append(error)

    def record_warning(self, message: str):
        self.warnings.append(message)

    def merge_plan_diagnostics(self, plan: Plan):
        for warning in plan.warnings:
            self.record_warning(warning)
        for error in plan.errors:
            self.record_error(error)

    @property
    def succeeded(self) -> bool:
        return not self.errors and not self.failsafe_tripped

    def as_dict(self) -> Dict[str, Any]:
        return {
            'mutation_count': self.mutation_count,
            'applied': dict(self.applied),
            'total_errors': len(self.errors),
            'total_warnings': len(self.warnings),
            'failsafe_tripped': self.failsafe_tripped,
            'runtime_seconds': self.runtime_seconds,
            'errors': [str(e) for e in self.errors],
        }
