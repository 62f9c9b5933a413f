"""
Main orchestrator for Roster Sync.

This module drives a sync run: fetch the roster, fetch the directory,
reconcile roster records (pass A), deactivate directory records missing
from the roster (pass B), then report. A failsafe stops the run once more
directory changes than the configured limit have been made.
"""

import sys
import logging
import importlib
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Callable, Optional

from roster_sync.applier import MutationApplier
from roster_sync.config import load_config, ConfigurationError
from roster_sync.directory.base import DirectoryServiceBase, DirectoryServiceError
from roster_sync.engine import ReconciliationEngine
from roster_sync.logging_setup import setup_logging
from roster_sync.models import DirectoryRecord, Plan, RunState, RosterRecord
from roster_sync.normalizer import RosterFieldMap, normalize_roster, normalize_directory
from roster_sync.notifications import (
    send_failure_notification,
    send_fetch_failure,
    send_failsafe_notification,
    send_error_summary,
    send_success_summary,
    format_runtime,
)
from roster_sync.retry import retry_call, is_retryable_error, create_retry_callback, MaxRetriesExceeded
from roster_sync.roster_source import RosterSource, RosterFetchError

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class SyncError(Exception):
    """Base exception for sync errors."""
    pass


class FetchError(SyncError):
    """Raised when the roster or directory cannot be read safely."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source} fetch failed: {message}")


class FailsafeTripped(SyncError):
    """Raised when the run has made more changes than the failsafe allows."""

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Failsafe tripped: {count} changes exceeds limit of {limit}")


class RunPhase(Enum):
    START = 'start'
    FETCH_ROSTER = 'fetch_roster'
    FETCH_DIRECTORY = 'fetch_directory'
    RECONCILE_ROSTER = 'reconcile_roster'
    RECONCILE_ORPHANS = 'reconcile_orphans'
    REPORT = 'report'
    DONE = 'done'


class SyncOrchestrator:
    """
    Runs one roster to directory reconciliation pass.

    Run state (mutation counter, errors, warnings) lives in ``self.state``
    and is only changed through the applier and this class.
    """

    def __init__(self, config_path: Optional[str] = None,
                 apply_changes: Optional[bool] = None,
                 now: Optional[Callable[[], datetime]] = None):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            apply_changes: Override sync.apply_changes (None keeps the configured value)
            now: Clock used for expiration checks
        """
        self.config = None
        self.config_path = config_path
        self.apply_changes_override = apply_changes
        self.now = now

        self.phase = RunPhase.START
        self.state = RunState()

        self.roster_source = None
        self.directory = None
        self.engine = None
        self.applier = None

    @property
    def sync_config(self) -> Dict[str, Any]:
        return self.config.get('sync', {})

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, 1 for any error, failsafe trip or failed fetch)
        """
        self.state.start_time = datetime.now()
        exit_code = EXIT_FAILURE

        try:
            self._load_configuration()
            self._setup_logging()

            mode = 'APPLY' if self._apply_changes() else 'DRY RUN'
            logger.info(f"Starting Roster Sync ({mode})")

            self._build_components()

            self._set_phase(RunPhase.FETCH_ROSTER)
            roster = self._fetch_roster()

            self._set_phase(RunPhase.FETCH_DIRECTORY)
            directory = self._fetch_directory()

            self._reconcile(roster, directory)

            self._set_phase(RunPhase.REPORT)
            exit_code = self._report()

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
        except FetchError as e:
            logger.error(str(e))
            self._notify(send_fetch_failure, e.source, str(e), self._notifications_config())
        except Exception as e:
            logger.error(f"Unexpected error during {self.phase.value}: {e}", exc_info=True)
            self._notify(send_failure_notification, "Sync Failed", f"Unexpected error: {e}",
                         self._notifications_config())
        finally:
            self.state.end_time = datetime.now()
            self.state.runtime_seconds = (self.state.end_time - self.state.start_time).total_seconds()
            self._log_sync_summary()
            self._cleanup()
            self._set_phase(RunPhase.DONE)

        return exit_code

    def _set_phase(self, phase: RunPhase):
        logger.debug(f"Phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path)
            logger.debug("Configuration loaded successfully")
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _setup_logging(self):
        setup_logging(self.config.get('logging', {}))

    def _apply_changes(self) -> bool:
        if self.apply_changes_override is not None:
            return self.apply_changes_override
        return bool(self.sync_config.get('apply_changes', False))

    def _notifications_config(self) -> Dict[str, Any]:
        return (self.config or {}).get('notifications', {})

    def _build_components(self):
        self.roster_source = RosterSource(self.config['roster'])
        self.directory = self._load_directory_module(self.config['directory'])
        self.engine = ReconciliationEngine(self.sync_config, now=self.now)
        self.applier = MutationApplier(
            self.directory,
            apply_changes=self._apply_changes(),
            double_count_creations=self.sync_config.get('double_count_creations', False),
        )
        logger.info(f"Suspension policy: {self.engine.policy.name}, "
                    f"email updates: {'on' if self.engine.apply_email_updates else 'off'}")

    def _load_directory_module(self, directory_config: Dict[str, Any]) -> DirectoryServiceBase:
        """Dynamically load the directory integration and create its client."""
        module_name = directory_config.get('module', 'google_workspace')

        try:
            directory_module = importlib.import_module(f"roster_sync.directory.{module_name}")
        except ImportError as e:
            raise ConfigurationError(f"Failed to import directory module {module_name}: {e}")

        for attr_name in dir(directory_module):
            attr = getattr(directory_module, attr_name)
            if (isinstance(attr, type) and
                    issubclass(attr, DirectoryServiceBase) and
                    attr is not DirectoryServiceBase):
                return attr(directory_config)

        raise ConfigurationError(f"No DirectoryServiceBase subclass found in module {module_name}")

    def _retry(self, operation: Callable, name: str, exceptions: tuple):
        error_config = self.config.get('error_handling', {})
        return retry_call(
            operation,
            max_attempts=error_config.get('max_retries', 3) + 1,
            delay=error_config.get('retry_wait_seconds', 5),
            backoff=1.0,
            exceptions=exceptions,
            retry_if=is_retryable_error,
            on_retry=create_retry_callback(name)
        )

    def _fetch_roster(self) -> Dict[str, RosterRecord]:
        """
        Fetch and normalize the roster.

        Raises:
            FetchError: If the fetch fails or yields fewer records than min_safe_user_count
        """
        try:
            entries = self._retry(self.roster_source.fetch_entries, "Roster fetch", (RosterFetchError,))
        except (RosterFetchError, MaxRetriesExceeded) as e:
            raise FetchError('Roster', str(e))

        field_map = RosterFieldMap.from_config(self.config['roster'])
        roster, excluded = normalize_roster(entries, field_map)
        for message in excluded:
            self.state.record_warning(message)

        min_count = self.sync_config.get('min_safe_user_count', 1000)
        if len(roster) < min_count:
            raise FetchError('Roster', f"only {len(roster)} valid records, minimum safe count is {min_count}")

        return roster

    def _fetch_directory(self) -> Dict[str, DirectoryRecord]:
        """
        Fetch and normalize the directory users.

        Raises:
            FetchError: If authentication or the user query fails
        """
        try:
            if not self.directory.authenticate():
                raise FetchError('Directory', f"authentication failed for {self.directory.name}")
            users = self._retry(self.directory.list_users, "Directory fetch", (DirectoryServiceError,))
        except (DirectoryServiceError, MaxRetriesExceeded) as e:
            raise FetchError('Directory', str(e))

        return normalize_directory(users, self.config['directory'].get('custom_schema', 'Workday'))

    def _reconcile(self, roster: Dict[str, RosterRecord], directory: Dict[str, DirectoryRecord]):
        try:
            self._set_phase(RunPhase.RECONCILE_ROSTER)
            self._reconcile_roster(roster, directory)

            self._set_phase(RunPhase.RECONCILE_ORPHANS)
            self._reconcile_orphans(roster, directory)
        except FailsafeTripped as e:
            self.state.failsafe_tripped = True
            logger.error(f"{e}; stopping run, changes already made are kept")

    def _reconcile_roster(self, roster: Dict[str, RosterRecord], directory: Dict[str, DirectoryRecord]):
        """Pass A: create or update an account for every roster record."""
        logger.info(f"Reconciling {len(roster)} roster records")
        for external_id, roster_record in roster.items():
            record = directory.get(external_id)
            plan = self.engine.plan_roster_record(roster_record, record)
            self._execute_plan(plan, record)

    def _reconcile_orphans(self, roster: Dict[str, RosterRecord], directory: Dict[str, DirectoryRecord]):
        """Pass B: deactivate directory records that are no longer in the roster."""
        if not self.engine.deactivation_allowed(len(roster)):
            message = (f"Skipping deactivation: roster has {len(roster)} records, "
                       f"needs more than {self.engine.min_safe_user_count}")
            logger.warning(message)
            self.state.record_warning(message)
            return

        orphans = [record for external_id, record in directory.items() if external_id not in roster]
        logger.info(f"Checking {len(orphans)} directory records missing from the roster")
        for record in orphans:
            plan = self.engine.plan_orphan_record(record)
            self._execute_plan(plan, record)

    def _execute_plan(self, plan: Plan, record: Optional[DirectoryRecord]):
        for warning in plan.warnings:
            logger.warning(warning)
        for error in plan.errors:
            logger.error(str(error))
        self.state.merge_plan_diagnostics(plan)

        for mutation in plan.mutations:
            self.applier.apply(mutation, self.state, record)
            self._check_failsafe()

    def _check_failsafe(self):
        limit = self.sync_config.get('failsafe_record_change_limit', 25)
        if self.state.mutation_count > limit:
            raise FailsafeTripped(self.state.mutation_count, limit)

    def _report(self) -> int:
        """Send notifications for the finished run and pick the exit code."""
        stats = self.state.as_dict()
        notifications_config = self._notifications_config()

        if self.state.failsafe_tripped:
            self._notify(send_failsafe_notification, stats,
                         self.sync_config.get('failsafe_record_change_limit', 25), notifications_config)
        elif self.state.errors:
            self._notify(send_error_summary, stats['errors'], notifications_config)
        else:
            self._notify(send_success_summary, stats, notifications_config)

        if self.state.succeeded:
            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        logger.warning(f"Sync completed with {len(self.state.errors)} errors"
                       f"{' after failsafe trip' if self.state.failsafe_tripped else ''}")
        return EXIT_FAILURE

    def _notify(self, send: Callable, *args):
        """Send a notification without letting a mail problem change the run outcome."""
        try:
            send(*args)
        except Exception as e:
            logger.error(f"Failed to send notification: {e}")

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        state = self.state

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {format_runtime(state.runtime_seconds)}")
        logger.info(f"Directory changes: {state.mutation_count}")
        for kind, count in state.applied.items():
            if count:
                logger.info(f"  {kind}: {count}")
        logger.info(f"Warnings: {len(state.warnings)}")
        logger.info(f"Errors: {len(state.errors)}")
        for error in state.errors:
            logger.info(f"  {error}")
        if state.failsafe_tripped:
            logger.info("Failsafe: TRIPPED")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the sync system.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            directory = self._load_directory_module(self.config['directory'])
            if not directory.authenticate():
                raise SyncError(f"authentication failed for {directory.name}")
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': f'Directory module {directory.name} ready'
            }
        except Exception as e:
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f'Directory check failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        notifications_config = self._notifications_config()
        if notifications_config.get('enable_email', False):
            missing_fields = [f for f in ('smtp_server', 'email_from', 'email_to')
                              if not notifications_config.get(f)]
            if missing_fields:
                health_status['checks']['notifications'] = {
                    'status': 'fail',
                    'message': f'Missing notification config: {missing_fields}'
                }
                health_status['status'] = 'unhealthy'
            else:
                health_status['checks']['notifications'] = {
                    'status': 'pass',
                    'message': 'Email notification configuration valid'
                }
        else:
            health_status['checks']['notifications'] = {
                'status': 'skip',
                'message': 'Email notifications disabled'
            }

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        for client in (self.roster_source, self.directory):
            if client is not None:
                client.close_connection()


def main():
    """Main entry point for the application."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description='Roster to directory user sync')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--dry-run', dest='apply_changes', action='store_const', const=False,
                      help='Log intended changes without applying them')
    mode.add_argument('--apply', dest='apply_changes', action='store_const', const=True,
                      help='Apply changes to the directory')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(config_path=args.config, apply_changes=args.apply_changes)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(EXIT_SUCCESS if health_status['status'] == 'healthy' else EXIT_FAILURE)

    elif args.test_email:
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(EXIT_FAILURE)

        from roster_sync.notifications import test_notification_config
        if test_notification_config(orchestrator._notifications_config()):
            print("Test email sent successfully")
            sys.exit(EXIT_SUCCESS)
        print("Failed to send test email")
        sys.exit(EXIT_FAILURE)

    else:
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
