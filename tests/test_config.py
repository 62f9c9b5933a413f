#!/usr/bin/env python3
"""
Unit tests for configuration module.

Covers loading, validation, defaults and environment variable overrides.
"""

import os
import sys
import tempfile
import yaml
import unittest
from unittest.mock import patch
from typing import Dict, Any

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from roster_sync.config import ConfigLoader, ConfigurationError, load_config


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader class."""

    def setUp(self):
        """Set up test fixtures."""
        self.valid_config = {
            'roster': {
                'url': 'https://wd.example.org/ccx/service/customreport2/tenant/isu/Directory_Sync?format=json',
                'username': 'isu_sync',
                'password': 'roster-pass',
                'email_field': 'Work_Email',
            },
            'directory': {
                'module': 'google_workspace',
                'auth': {'method': 'token', 'token': 'ya29.token'},
            },
            'sync': {
                'failsafe_record_change_limit': 40,
                'min_safe_user_count': 500,
                'org_units': {'assigned': '/Staff/Field'},
            },
        }
        self.temp_files = []

    def tearDown(self):
        for path in self.temp_files:
            os.unlink(path)

    def create_test_config(self, config_data: Dict[str, Any]) -> str:
        """Create a temporary config file with the given data."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.safe_dump(config_data, f)
            self.temp_files.append(f.name)
            return f.name

    def test_valid_config(self):
        config = ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertEqual(config['roster']['email_field'], 'Work_Email')
        self.assertEqual(config['sync']['failsafe_record_change_limit'], 40)
        self.assertEqual(config['sync']['min_safe_user_count'], 500)

    def test_defaults_applied(self):
        config = load_config(self.create_test_config(self.valid_config))

        self.assertEqual(config['roster']['entries_key'], 'Report_Entry')
        self.assertEqual(config['directory']['custom_schema'], 'Workday')
        self.assertFalse(config['sync']['apply_changes'])
        self.assertFalse(config['sync']['apply_email_updates'])
        self.assertFalse(config['sync']['double_count_creations'])
        self.assertTrue(config['sync']['grace_period_enabled'])
        self.assertEqual(config['sync']['org_units'], {
            'assigned': '/Staff/Field',
            'default': '/Users',
            'disabled': '/Disabled',
        })
        self.assertEqual(config['logging']['retention_days'], 7)
        self.assertEqual(config['error_handling']['max_retries'], 3)
        self.assertFalse(config['notifications']['enable_email'])

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader('/nonexistent/config.yaml').load()

        self.assertIn('not found', str(ctx.exception))

    def test_invalid_yaml(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("roster: [unclosed\n")
            self.temp_files.append(f.name)

        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(f.name).load()

        self.assertIn('Invalid YAML', str(ctx.exception))

    def test_missing_required_fields_are_all_reported(self):
        config_data = {'roster': {'url': 'https://wd.example.org/report'}}

        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(self.create_test_config(config_data)).load()

        message = str(ctx.exception)
        self.assertIn('roster field: username', message)
        self.assertIn('roster field: password', message)
        self.assertIn('directory.auth.method', message)

    def test_invalid_limits(self):
        self.valid_config['sync']['failsafe_record_change_limit'] = -1
        self.valid_config['sync']['min_safe_user_count'] = 'many'

        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertIn('failsafe_record_change_limit', str(ctx.exception))
        self.assertIn('min_safe_user_count', str(ctx.exception))

    def test_relative_org_unit_rejected(self):
        self.valid_config['sync']['org_units'] = {'disabled': 'Disabled'}

        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertIn('org_units.disabled', str(ctx.exception))

    def test_unknown_roster_field_rejected(self):
        self.valid_config['roster']['fields'] = {'external_id': 'Employee_ID', 'employee_number': 'x'}

        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertIn('Unknown roster.fields key: employee_number', str(ctx.exception))

    def test_roster_fields_must_be_mapping(self):
        self.valid_config['roster']['fields'] = ['Employee_ID']

        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertIn('roster.fields must be a mapping', str(ctx.exception))

    def test_empty_sections_get_defaults(self):
        self.valid_config['sync'] = None
        self.valid_config['logging'] = None
        self.valid_config['notifications'] = None

        config = ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertEqual(config['sync']['failsafe_record_change_limit'], 25)
        self.assertEqual(config['sync']['org_units']['disabled'], '/Disabled')
        self.assertEqual(config['logging']['level'], 'INFO')
        self.assertFalse(config['notifications']['enable_email'])

    def test_org_unit_trailing_slash_removed(self):
        self.valid_config['sync']['org_units'] = {'assigned': '/Staff/Field/', 'default': '/'}

        config = ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertEqual(config['sync']['org_units']['assigned'], '/Staff/Field')
        self.assertEqual(config['sync']['org_units']['default'], '/')

    @patch.dict(os.environ, {'ROSTER_PASSWORD': 'env-pass', 'DIRECTORY_TOKEN': 'env-token'})
    def test_environment_overrides(self):
        del self.valid_config['roster']['password']

        config = ConfigLoader(self.create_test_config(self.valid_config)).load()

        self.assertEqual(config['roster']['password'], 'env-pass')
        self.assertEqual(config['directory']['auth']['token'], 'env-token')

    @patch.dict(os.environ, {'CONFIG_PATH': '/etc/roster-sync/config.yaml'})
    def test_config_path_from_environment(self):
        self.assertEqual(ConfigLoader().config_path, '/etc/roster-sync/config.yaml')


if __name__ == '__main__':
    unittest.main()
