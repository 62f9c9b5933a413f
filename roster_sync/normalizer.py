"""
Record normalization and indexing.

Converts raw roster report entries and raw directory user resources into
typed records keyed by external id. Malformed roster entries are skipped
and reported; directory users without an organization external id are
simply not part of the working set.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, date
from typing import Dict, List, Any, Iterable, Optional, Tuple, TypeVar

from roster_sync.models import RosterRecord, DirectoryRecord

logger = logging.getLogger(__name__)

EXTERNAL_ID_TYPE = 'organization'
EXPIRE_DATE_FORMAT = '%Y-%m-%d'

_LETTER = re.compile(r'[^\W\d_]')


@dataclass
class RosterFieldMap:
    """Names of the roster report fields for each record attribute."""

    external_id: str = 'externalId'
    user_name: str = 'userName'
    display_name: str = 'displayName'
    email: str = 'email'
    sync_email: str = 'syncEmail'
    account_locked: str = 'accountLocked'
    given_name: str = 'givenName'
    last_name: str = 'lastName'
    org_assignment_flag: str = 'orgAssignmentFlag'

    @classmethod
    def from_config(cls, roster_config: Dict[str, Any]) -> 'RosterFieldMap':
        field_map = cls(**(roster_config.get('fields') or {}))
        email_field = roster_config.get('email_field')
        if email_field:
            field_map.sync_email = email_field
        return field_map


def _text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def roster_record_from_entry(entry: Dict[str, Any], field_map: RosterFieldMap) -> RosterRecord:
    """Populate a RosterRecord from one report entry."""
    return RosterRecord(
        external_id=_text(entry.get(field_map.external_id)),
        user_name=_text(entry.get(field_map.user_name)),
        display_name=_text(entry.get(field_map.display_name)),
        email=_text(entry.get(field_map.email)),
        sync_email=_text(entry.get(field_map.sync_email)),
        account_locked=_text(entry.get(field_map.account_locked)),
        given_name=_text(entry.get(field_map.given_name)),
        last_name=_text(entry.get(field_map.last_name)),
        org_assignment_flag=entry.get(field_map.org_assignment_flag),
    )


def validate_roster_record(record: RosterRecord) -> Optional[str]:
    """
    Check a roster record for inclusion in the working set.

    Returns:
        None if the record is usable, otherwise the reason it is excluded
    """
    who = record.display_name or record.email or record.user_name or 'unknown'
    if not record.external_id:
        return f"Roster entry for {who} is missing externalId"
    if not record.user_name:
        return f"Roster entry {record.external_id} ({who}) is missing userName"
    if _LETTER.search(record.external_id):
        return f"Roster entry {record.external_id} ({who}) has a non-numeric externalId"
    return None


def normalize_roster(entries: Iterable[Dict[str, Any]],
                     field_map: Optional[RosterFieldMap] = None) -> Tuple[Dict[str, RosterRecord], List[str]]:
    """
    Build the roster working set.

    Args:
        entries: Raw report entries
        field_map: Roster field names (defaults apply if None)

    Returns:
        Tuple of (external id -> RosterRecord, exclusion messages)
    """
    field_map = field_map or RosterFieldMap()
    valid = []
    excluded = []

    for entry in entries:
        record = roster_record_from_entry(entry, field_map)
        problem = validate_roster_record(record)
        if problem:
            logger.warning(f"Skipping roster entry: {problem}")
            excluded.append(problem)
            continue
        valid.append(record)

    index = build_index(valid)
    logger.info(f"Roster working set: {len(index)} records ({len(excluded)} excluded)")
    return index, excluded


def parse_expire_date(value: Any, user_key: str = '') -> Optional[date]:
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), EXPIRE_DATE_FORMAT).date()
    except ValueError:
        logger.warning(f"Ignoring invalid accountExpireDate '{value}' on directory user {user_key}")
        return None


def _optional_bool(value: Any) -> Optional[bool]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == 'true'


def organization_external_id(user: Dict[str, Any]) -> Optional[str]:
    for external_id in user.get('externalIds') or []:
        if external_id.get('type') == EXTERNAL_ID_TYPE and external_id.get('value'):
            return str(external_id['value']).strip()
    return None


def directory_record_from_user(user: Dict[str, Any], external_id: str,
                               schema_name: str = 'Workday') -> DirectoryRecord:
    """Populate a DirectoryRecord from one directory user resource."""
    name = user.get('name') or {}
    custom = (user.get('customSchemas') or {}).get(schema_name) or {}
    user_key = user.get('id') or user.get('primaryEmail', '')

    return DirectoryRecord(
        external_id=external_id,
        user_key=user_key,
        suspended=bool(user.get('suspended', False)),
        suspension_reason=user.get('suspensionReason') or '',
        primary_address=user.get('primaryEmail') or '',
        given_name=name.get('givenName') or '',
        family_name=name.get('familyName') or '',
        full_name=name.get('fullName') or '',
        org_unit_path=user.get('orgUnitPath') or '/',
        workday_managed=_optional_bool(custom.get('workdayManaged')),
        account_expire_date=parse_expire_date(custom.get('accountExpireDate'), user_key),
        force_active_until_expire=_optional_bool(custom.get('forceActiveUntilExpire')),
        last_login_time=user.get('lastLoginTime'),
    )


def normalize_directory(users: Iterable[Dict[str, Any]], schema_name: str = 'Workday') -> Dict[str, DirectoryRecord]:
    """
    Build the directory working set.

    Users without an organization external id are left out silently; they
    are accounts this sync does not own.
    """
    records = []
    omitted = 0
    for user in users:
        external_id = organization_external_id(user)
        if not external_id:
            omitted += 1
            continue
        records.append(directory_record_from_user(user, external_id, schema_name))

    index = build_index(records)
    logger.info(f"Directory working set: {len(index)} records ({omitted} without external id)")
    return index


RecordT = TypeVar('RecordT', RosterRecord, DirectoryRecord)


def build_index(records: Iterable[RecordT]) -> Dict[str, RecordT]:
    """Map external id to record; a later duplicate replaces an earlier one."""
    index = {}
    for record in records:
        if record.external_id in index:
            logger.warning(f"Duplicate external id {record.external_id}, keeping the last one seen")
        index[record.external_id] = record
    return index
