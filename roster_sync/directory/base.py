"""
Base directory service interface.

Directory integrations inherit from DirectoryServiceBase and implement the
read and write operations the sync needs. The orchestrator loads the
integration by module name from this package.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any

from roster_sync.http_client import HTTPClient, HTTPClientError

logger = logging.getLogger(__name__)


class DirectoryServiceError(Exception):
    """Base exception for directory service errors."""

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class DirectoryAuthenticationError(DirectoryServiceError):
    """Raised when authentication to the directory fails."""
    pass


class DirectoryServiceBase(HTTPClient, ABC):
    """
    Abstract base class for directory integrations.

    Provides HTTP handling through HTTPClient; subclasses map the generic
    operations onto the directory's API.
    """

    def __init__(self, config: Dict[str, Any]):
        config = dict(config)
        config.setdefault('name', 'directory')
        super().__init__(config)

    def call(self, method: str, path: str, **kwargs) -> Any:
        """Make a request and translate transport errors into DirectoryServiceError."""
        try:
            return self.request(method, path, **kwargs)
        except HTTPClientError as e:
            if e.status_code == 401:
                raise DirectoryAuthenticationError(str(e), e.status_code)
            raise DirectoryServiceError(str(e), e.status_code)

    @abstractmethod
    def list_users(self) -> List[Dict[str, Any]]:
        """
        Retrieve all directory users.

        Returns:
            Raw user resources including external ids, name, primary address,
            suspension state, org unit path and custom attributes
        """

    @abstractmethod
    def create_user(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a user account.

        Args:
            body: Primary address, name, org unit, suspended flag, external ids,
                  password and global address list visibility

        Returns:
            Created user resource
        """

    @abstractmethod
    def update_user(self, user_key: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a field delta to an existing user.

        Args:
            user_key: Directory identifier of the user
            changes: Fields to set (suspended, primaryEmail, name, orgUnitPath)

        Returns:
            Updated user resource
        """
