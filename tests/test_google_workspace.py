#!/usr/bin/env python3
"""
Unit tests for the Google Workspace directory integration.
"""

import http.client
import json
import os
import sys
import unittest
from unittest.mock import Mock, patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from roster_sync.directory.base import DirectoryServiceError, DirectoryAuthenticationError
from roster_sync.directory.google_workspace import GoogleWorkspaceDirectory, USERS_PATH
from roster_sync.applier import MutationApplier
from roster_sync.http_client import HTTPClientError
from roster_sync.models import Mutation, MutationKind, RunState


class TestGoogleWorkspaceDirectory(unittest.TestCase):

    def setUp(self):
        self.config = {
            'module': 'google_workspace',
            'auth': {'method': 'token', 'token': 'ya29.token'},
            'custom_schema': 'Workday',
        }
        self.calls = []

    def recorder(self, responses):
        """Build a request stand-in that snapshots its arguments."""
        responses = list(responses)

        def fake_request(method, path, body=None, params=None, headers=None):
            self.calls.append((method, path, body, dict(params) if params else None))
            return responses.pop(0)
        return fake_request

    def test_defaults(self):
        directory = GoogleWorkspaceDirectory(self.config)

        self.assertEqual(directory.host, 'admin.googleapis.com')
        self.assertEqual(directory.customer, 'my_customer')
        self.assertEqual(directory.name, 'google_workspace')

    def test_page_size_capped(self):
        self.config['page_size'] = 2000

        self.assertEqual(GoogleWorkspaceDirectory(self.config).page_size, 500)

    def test_list_users_follows_page_tokens(self):
        directory = GoogleWorkspaceDirectory(self.config)
        pages = [
            {'users': [{'id': '1'}, {'id': '2'}], 'nextPageToken': 'p2'},
            {'users': [{'id': '3'}]},
        ]

        with patch.object(directory, 'request', side_effect=self.recorder(pages)):
            users = directory.list_users()

        self.assertEqual([u['id'] for u in users], ['1', '2', '3'])
        self.assertEqual(len(self.calls), 2)
        first_params = self.calls[0][3]
        self.assertEqual(first_params['projection'], 'custom')
        self.assertEqual(first_params['customFieldMask'], 'Workday')
        self.assertEqual(first_params['customer'], 'my_customer')
        self.assertNotIn('pageToken', first_params)
        self.assertEqual(self.calls[1][3]['pageToken'], 'p2')

    def test_list_users_by_domain(self):
        self.config['domain'] = 'example.org'
        directory = GoogleWorkspaceDirectory(self.config)

        with patch.object(directory, 'request', side_effect=self.recorder([{}])):
            self.assertEqual(directory.list_users(), [])

        params = self.calls[0][3]
        self.assertEqual(params['domain'], 'example.org')
        self.assertNotIn('customer', params)

    def test_create_user_posts_body(self):
        directory = GoogleWorkspaceDirectory(self.config)
        body = {'primaryEmail': 'ada@example.org', 'orgUnitPath': '/Users'}

        with patch.object(directory, 'request', side_effect=self.recorder([{'id': 'uid-9'}])):
            self.assertEqual(directory.create_user(body), {'id': 'uid-9'})

        self.assertEqual(self.calls[0][:3], ('POST', USERS_PATH, body))

    def test_update_user_puts_delta(self):
        directory = GoogleWorkspaceDirectory(self.config)

        with patch.object(directory, 'request', side_effect=self.recorder([{}])):
            directory.update_user('ada@example.org', {'suspended': True})

        self.assertEqual(self.calls[0][:3],
                         ('PUT', f'{USERS_PATH}/ada@example.org', {'suspended': True}))

    def test_auth_failure_translated(self):
        directory = GoogleWorkspaceDirectory(self.config)

        with patch.object(directory, 'request', side_effect=HTTPClientError("denied", 401)):
            with self.assertRaises(DirectoryAuthenticationError):
                directory.list_users()

    def test_other_failures_translated(self):
        directory = GoogleWorkspaceDirectory(self.config)

        with patch.object(directory, 'request', side_effect=HTTPClientError("HTTP 503", 503)):
            with self.assertRaises(DirectoryServiceError) as ctx:
                directory.update_user('uid-1', {'suspended': False})

        self.assertEqual(ctx.exception.status_code, 503)


class TestBrokenResponseRecovery(unittest.TestCase):
    """A malformed response must not poison later writes on the same client."""

    def suspend(self, user_key):
        return Mutation(kind=MutationKind.SUSPEND, external_id=user_key,
                        user_key=user_key, changes={'suspended': True})

    @patch('roster_sync.http_client.HTTPSConnection')
    def test_writes_continue_after_bad_status_line(self, mock_https):
        broken_conn = Mock()
        broken_conn.getresponse.side_effect = http.client.BadStatusLine('GARBAGE\r\n')

        ok_response = Mock(status=200, reason='OK')
        ok_response.read.return_value = json.dumps({'suspended': True}).encode('utf-8')
        healthy_conn = Mock()
        healthy_conn.getresponse.return_value = ok_response

        mock_https.side_effect = [broken_conn, healthy_conn]
        directory = GoogleWorkspaceDirectory({'auth': {'method': 'token', 'token': 't'}})
        applier = MutationApplier(directory, apply_changes=True)
        state = RunState()

        results = [applier.apply(self.suspend(key), state) for key in ('uid-1', 'uid-2', 'uid-3')]

        self.assertEqual(results, [False, True, True])
        self.assertEqual(state.mutation_count, 2)
        self.assertEqual(len(state.errors), 1)
        self.assertIn('BadStatusLine', state.errors[0].message)
        broken_conn.close.assert_called_once()
        self.assertEqual(healthy_conn.request.call_count, 2)

    @patch('roster_sync.http_client.HTTPSConnection')
    def test_incomplete_read_is_a_directory_error(self, mock_https):
        response = Mock(status=200, reason='OK')
        response.read.side_effect = http.client.IncompleteRead(b'{"us')
        mock_https.return_value.getresponse.return_value = response
        directory = GoogleWorkspaceDirectory({'auth': {'method': 'token', 'token': 't'}})

        with self.assertRaises(DirectoryServiceError):
            directory.list_users()

        self.assertIsNone(directory.connection)


if __name__ == '__main__':
    unittest.main()
