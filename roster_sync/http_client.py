"""
Shared HTTP client functionality.

Both the roster source and the directory service talk JSON over HTTP(S).
This module holds the connection handling, SSL/truststore setup and
authentication header logic they have in common.
"""

import json
import ssl
import time
import base64
import logging
from typing import Dict, Any, Optional, Union
from urllib.parse import urlparse, urljoin, urlencode
from http.client import HTTPSConnection, HTTPConnection, HTTPException

logger = logging.getLogger(__name__)


class HTTPClientError(Exception):
    """Raised when an HTTP request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HTTPAuthenticationError(HTTPClientError):
    """Raised when the remote side rejects our credentials."""
    pass


class HTTPClient:
    """
    Minimal JSON-over-HTTP client.

    Config keys:
        name: Label used in log messages
        base_url: Scheme, host and base path for requests
        auth: Authentication settings (method basic, token/bearer or oauth2)
        verify_ssl: Verify server certificates (default True)
        truststore_file / truststore_type / truststore_password: Extra CA certificates
        timeout: Socket timeout in seconds (default 30)
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.name = config.get('name', 'http')
        self.base_url = config['base_url']
        self.auth_config = config.get('auth') or {}
        self.verify_ssl = config.get('verify_ssl', True)
        self.timeout = config.get('timeout', 30)

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None
        self.auth_headers = {}
        self._token_expires_at = None

        self._setup_ssl_context()
        self._setup_authentication()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.name}")
            return

        self.ssl_context = ssl.create_default_context()

        truststore_file = self.config.get('truststore_file')
        if truststore_file:
            self._load_truststore(truststore_file)

    def _load_truststore(self, truststore_file: str):
        """Load additional CA certificates, e.g. for a TLS-inspecting proxy."""
        truststore_type = self.config.get('truststore_type', 'PEM').upper()
        truststore_password = self.config.get('truststore_password')

        try:
            if truststore_type == 'PEM':
                self.ssl_context.load_verify_locations(cafile=truststore_file)
                logger.info(f"Loaded PEM truststore: {truststore_file}")

            elif truststore_type == 'PKCS12':
                from cryptography.hazmat.primitives import serialization
                from cryptography.hazmat.primitives.serialization import pkcs12

                with open(truststore_file, 'rb') as f:
                    p12_data = f.read()

                _, certificate, additional_certificates = pkcs12.load_key_and_certificates(
                    p12_data, truststore_password.encode() if truststore_password else None
                )

                ca_certs = []
                if certificate:
                    ca_certs.append(certificate.public_bytes(serialization.Encoding.PEM).decode())
                for cert in (additional_certificates or []):
                    ca_certs.append(cert.public_bytes(serialization.Encoding.PEM).decode())

                if ca_certs:
                    self.ssl_context.load_verify_locations(cadata='\n'.join(ca_certs))
                    logger.info(f"Loaded PKCS12 truststore: {truststore_file}")

            else:
                raise HTTPClientError(f"Unsupported truststore type: {truststore_type}")

        except HTTPClientError:
            raise
        except Exception as e:
            logger.error(f"Failed to load truststore {truststore_file}: {e}")
            raise HTTPClientError(f"Truststore loading failed: {e}")

    def _setup_authentication(self):
        """Set up authentication headers based on configuration."""
        auth_method = self.auth_config.get('method', '').lower()

        if auth_method == 'basic':
            username = self.auth_config.get('username')
            password = self.auth_config.get('password')
            if username and password:
                credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
                self.auth_headers['Authorization'] = f"Basic {credentials}"
                logger.debug(f"Configured Basic authentication for {self.name}")
            else:
                logger.error(f"Basic auth configured but missing username or password for {self.name}")

        elif auth_method in ('token', 'bearer'):
            token = self.auth_config.get('token')
            if token:
                self.auth_headers['Authorization'] = f"Bearer {token}"
                logger.debug(f"Configured Bearer token authentication for {self.name}")
            else:
                logger.error(f"Token auth configured but missing token for {self.name}")

        elif auth_method == 'oauth2':
            if not all(self.auth_config.get(k) for k in ('client_id', 'client_secret', 'token_url')):
                logger.error(f"OAuth2 auth configured but missing client_id, client_secret or token_url for {self.name}")
            else:
                logger.debug(f"OAuth2 authentication configured for {self.name}")

        elif auth_method:
            logger.warning(f"Unknown authentication method '{auth_method}' for {self.name}")

    def _open_connection(self, netloc: str, scheme: str) -> Union[HTTPSConnection, HTTPConnection]:
        if scheme == 'https':
            return HTTPSConnection(netloc, context=self.ssl_context, timeout=self.timeout)
        return HTTPConnection(netloc, timeout=self.timeout)

    def _oauth2_get_token(self) -> bool:
        """
        Retrieve an OAuth2 access token using the client credentials flow.

        Returns:
            True if a token was obtained
        """
        token_url = urlparse(self.auth_config['token_url'])
        token_data = {
            'grant_type': 'client_credentials',
            'client_id': self.auth_config['client_id'],
            'client_secret': self.auth_config['client_secret'],
        }
        if self.auth_config.get('scope'):
            token_data['scope'] = self.auth_config['scope']

        token_conn = self._open_connection(token_url.netloc, token_url.scheme)
        try:
            logger.debug(f"Requesting OAuth2 token for {self.name}")
            token_conn.request('POST', token_url.path or '/', urlencode(token_data), {
                'Content-Type': 'application/x-www-form-urlencoded',
                'Accept': 'application/json',
            })
            response = token_conn.getresponse()
            response_data = response.read().decode('utf-8')

            if response.status != 200:
                logger.error(f"OAuth2 token request failed for {self.name}: {response.status} {response.reason}")
                return False

            token_response = json.loads(response_data)
            access_token = token_response.get('access_token')
            if not access_token:
                logger.error(f"OAuth2 response missing access_token for {self.name}")
                return False

            self.auth_headers['Authorization'] = f"Bearer {access_token}"
            expires_in = token_response.get('expires_in')
            if expires_in:
                self._token_expires_at = time.time() + int(expires_in) - 60
            logger.info(f"Obtained OAuth2 token for {self.name}")
            return True

        except (OSError, ValueError, HTTPException) as e:
            logger.error(f"OAuth2 token request error for {self.name}: {e}")
            return False
        finally:
            token_conn.close()

    def authenticate(self) -> bool:
        """
        Perform any authentication step that needs a round trip.

        Returns:
            True if the client is ready to make requests
        """
        auth_method = self.auth_config.get('method', '').lower()
        if auth_method != 'oauth2':
            return True
        if self._token_expires_at and time.time() < self._token_expires_at:
            logger.debug(f"OAuth2 token still valid for {self.name}")
            return True
        return self._oauth2_get_token()

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        if self.connection is None:
            self.connection = self._open_connection(self.host, self.parsed_url.scheme)
        return self.connection

    def build_path(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        full_path = urljoin(self.base_path + '/', path.lstrip('/'))
        if params:
            query = {k: v for k, v in params.items() if v is not None}
            if query:
                full_path += '?' + urlencode(query)
        return full_path

    def request(self, method: str, path: str, body: Optional[Dict] = None,
                params: Optional[Dict[str, Any]] = None,
                headers: Optional[Dict] = None) -> Any:
        """
        Make a JSON request.

        Args:
            method: HTTP method
            path: Path relative to base_url
            body: JSON body
            params: Query string parameters
            headers: Additional headers

        Returns:
            Parsed JSON response ({} for an empty body)

        Raises:
            HTTPClientError: If the request fails or the response is not JSON
        """
        full_path = self.build_path(path, params)

        request_headers = {'Accept': 'application/json'}
        request_headers.update(self.auth_headers)
        if headers:
            request_headers.update(headers)

        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            request_headers['Content-Type'] = 'application/json'

        auth_method = self.auth_config.get('method', '').lower()
        for auth_attempt in range(2):
            try:
                conn = self._get_connection()
                logger.debug(f"Making {method} request to {self.host}{full_path}")
                conn.request(method, full_path, request_body, request_headers)
                response = conn.getresponse()
                response_data = response.read()
            except (OSError, HTTPException) as e:
                # A half-finished exchange leaves the keep-alive connection unusable
                self.close_connection()
                raise HTTPClientError(f"Connection error to {self.name}: {type(e).__name__}: {e}")

            logger.debug(f"Response status: {response.status} {response.reason}")

            if response.status == 401:
                if auth_method == 'oauth2' and auth_attempt == 0 and self._oauth2_get_token():
                    logger.info(f"Refreshed OAuth2 token for {self.name} after 401")
                    request_headers.update(self.auth_headers)
                    continue
                raise HTTPAuthenticationError(f"Authentication failed for {self.name}", 401)

            if response.status >= 400:
                detail = response_data[:200].decode('utf-8', 'replace')
                raise HTTPClientError(
                    f"HTTP {response.status} {response.reason} from {self.name}: {detail}",
                    response.status,
                )

            try:
                text = response_data.decode('utf-8')
            except UnicodeDecodeError as e:
                raise HTTPClientError(f"Invalid response encoding from {self.name}: {e}")

            try:
                return json.loads(text) if text else {}
            except json.JSONDecodeError as e:
                raise HTTPClientError(f"Invalid JSON response from {self.name}: {e}")

        raise HTTPAuthenticationError(f"Authentication failed for {self.name}", 401)

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except OSError as e:
                logger.warning(f"Error closing connection for {self.name}: {e}")
            finally:
                self.connection = None
