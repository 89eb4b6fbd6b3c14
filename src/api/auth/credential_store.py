"""
Google credential state for the API process.

One CredentialStore instance lives for the whole process:
- loaded from config at boot (FastAPI lifespan) via ``load_from_config``;
- replaced after an OAuth callback via ``update_from_token_info``;
- read by request dependencies via ``require``, which raises AuthRequired
  when nothing is loaded.

The intake core never touches this module; it receives stores built from the
credentials it holds.
"""
import os
import threading
from typing import Optional

import google.auth
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials as UserCredentials

import config
from order_intake_contract import AuthRequired
from utils.logger import get_logger


class CredentialStore:
    """Holds the live Google credentials for Sheets and Drive calls"""

    def __init__(self):
        self._credentials = None
        self._source: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def credentials(self):
        return self._credentials

    @property
    def source(self) -> Optional[str]:
        return self._source

    @property
    def is_authenticated(self) -> bool:
        return self._credentials is not None

    def set_credentials(self, credentials, source: str) -> None:
        with self._lock:
            self._credentials = credentials
            self._source = source
        get_logger().info(f"Google credentials loaded ({source})", component="Auth")

    def clear(self) -> None:
        with self._lock:
            self._credentials = None
            self._source = None

    def require(self):
        """Return the loaded credentials or raise AuthRequired."""
        credentials = self._credentials
        if credentials is None:
            raise AuthRequired("Google 인증이 필요합니다.")
        return credentials

    def load_from_config(self) -> bool:
        """
        Load credentials at boot.

        Priority:
        1. Authorized-user token file (GOOGLE_OAUTH_TOKEN_FILE)
        2. Service account (config credential resolution)
        3. Application Default Credentials on Cloud Run / Kubernetes

        Returns:
            True if credentials were loaded. Missing credentials are not an
            error here; requests answer 401 until a token arrives.
        """
        logger = get_logger()
        token_file = config.GOOGLE_OAUTH_TOKEN_FILE
        if token_file and os.path.exists(token_file):
            credentials = UserCredentials.from_authorized_user_file(token_file, config.GOOGLE_SCOPES)
            self.set_credentials(credentials, "oauth_token_file")
            return True

        try:
            creds_path = config.get_credentials_path()
        except ValueError as e:
            logger.warning(f"No Google credentials configured: {e}", component="Auth")
            return False

        if creds_path:
            credentials = service_account.Credentials.from_service_account_file(
                creds_path, scopes=config.GOOGLE_SCOPES
            )
            self.set_credentials(credentials, "service_account")
        else:
            credentials, _ = google.auth.default(scopes=config.GOOGLE_SCOPES)
            self.set_credentials(credentials, "application_default")
        return True

    def update_from_token_info(self, token_info: dict, persist: bool = True) -> None:
        """
        Replace the live credentials with an authorized-user token (the
        payload an OAuth callback produces). Persisted to
        GOOGLE_OAUTH_TOKEN_FILE when configured so restarts keep it.
        """
        credentials = UserCredentials.from_authorized_user_info(token_info, config.GOOGLE_SCOPES)
        self.set_credentials(credentials, "oauth_callback")

        if persist and config.GOOGLE_OAUTH_TOKEN_FILE:
            with open(config.GOOGLE_OAUTH_TOKEN_FILE, 'w', encoding='utf-8') as f:
                f.write(credentials.to_json())


# Process-wide instance
credential_store = CredentialStore()
