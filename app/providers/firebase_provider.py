"""
Firebase backend provider.

Client context: Identity Toolkit session + Firestore clients that
authenticate with the signed-in user's ID token + Storage REST.
Server context: firebase_admin app for auth, Firestore AsyncClient with
service account credentials.
"""
from __future__ import annotations

from typing import Any, Optional

import firebase_admin
from firebase_admin import credentials as admin_credentials
from google.auth.credentials import AnonymousCredentials
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import firestore
from google.oauth2 import credentials as user_credentials
from google.oauth2 import service_account

from app.config import get_logger
from app.exceptions import ConfigurationError
from app.loaders.firebase import FirebaseClientConfig, FirebaseConfigLoader, FirebaseServerConfig
from app.utils import decode_service_account

from .auth.firebase_impl import FirebaseAuthProvider, FirebaseClientSession
from .context import ExecutionContext
from .database.firestore_impl import FirestoreDatabaseProvider
from .interface import BackendProviderInterface
from .storage.firebase_impl import FirebaseStorageProvider

logger = get_logger("providers.firebase")

ADMIN_APP_NAME = "backend-provider"


class FirebaseProvider(BackendProviderInterface):
    name = "firebase"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._loader = FirebaseConfigLoader()
        self._session: Optional[FirebaseClientSession] = None
        self._project_id: Optional[str] = None
        self._id_token: Optional[str] = None
        self._firestore: Any = None
        self._watch_firestore: Any = None
        self._admin_app: Any = None
        self._server_firestore: Any = None

    # =========================================================================
    # Client Context
    # =========================================================================

    async def _initialize_client(self) -> None:
        config: FirebaseClientConfig = self._loader.parse_client(await self._load_client_config())
        self._project_id = config.project_id
        self._session = FirebaseClientSession(
            config.api_key,
            timeout_seconds=self.settings.FIREBASE_HTTP_TIMEOUT_SECONDS,
        )
        self._session.add_token_listener(self._on_token_changed)
        self._firestore = self._build_firestore(firestore.AsyncClient)

        self._auth = FirebaseAuthProvider(ExecutionContext.CLIENT, session=self._session)
        self._db = FirestoreDatabaseProvider(
            lambda: self._firestore,
            ExecutionContext.CLIENT,
            watch_client_provider=self._get_watch_firestore,
        )
        self._storage = FirebaseStorageProvider(self._session, config.storage_bucket, ExecutionContext.CLIENT)
        logger.info("Firebase client context ready | project=%s", config.project_id)

    def _user_credentials(self) -> Any:
        if self._id_token:
            return user_credentials.Credentials(token=self._id_token)
        return AnonymousCredentials()

    def _build_firestore(self, client_class: type) -> Any:
        return client_class(project=self._project_id, credentials=self._user_credentials())

    def _on_token_changed(self, id_token: Optional[str]) -> None:
        # Firestore credentials are fixed per client, so swap clients on every new token
        self._id_token = id_token
        self._firestore = self._build_firestore(firestore.AsyncClient)
        self._watch_firestore = None
        logger.debug("Firestore client rebuilt | signed_in=%s", id_token is not None)

    def _get_watch_firestore(self) -> Any:
        if self._watch_firestore is None:
            self._watch_firestore = self._build_firestore(firestore.Client)
        return self._watch_firestore

    # =========================================================================
    # Server Context
    # =========================================================================

    async def _initialize_server(self) -> None:
        config: FirebaseServerConfig = self._loader.load_server(self.settings)
        try:
            service_credentials, admin_credential = self._service_account(config)
            try:
                self._admin_app = firebase_admin.get_app(ADMIN_APP_NAME)
            except ValueError:
                self._admin_app = firebase_admin.initialize_app(
                    admin_credential,
                    {"projectId": config.project_id},
                    name=ADMIN_APP_NAME,
                )
            self._server_firestore = firestore.AsyncClient(project=config.project_id, credentials=service_credentials)
        except (DefaultCredentialsError, ValueError, OSError) as e:
            raise ConfigurationError(
                "Firebase service account credentials could not be loaded",
                details=str(e),
                error_code="INVALID_CONFIGURATION",
            ) from e

        self._server_auth = FirebaseAuthProvider(ExecutionContext.SERVER, app=self._admin_app)
        self._server_db = FirestoreDatabaseProvider(lambda: self._server_firestore, ExecutionContext.SERVER)
        logger.info("Firebase server context ready | project=%s", config.project_id)

    @staticmethod
    def _service_account(config: FirebaseServerConfig) -> tuple[Any, Any]:
        """Service account from base64 env, then file path, then application default credentials."""
        if config.credentials_base64 is not None:
            info = decode_service_account(config.credentials_base64.get_secret_value())
            logger.info("Using service account from FIREBASE_CREDS_BASE64")
            return (
                service_account.Credentials.from_service_account_info(info),
                admin_credentials.Certificate(info),
            )
        if config.credentials_path:
            logger.info("Using service account file %s", config.credentials_path)
            return (
                service_account.Credentials.from_service_account_file(config.credentials_path),
                admin_credentials.Certificate(config.credentials_path),
            )
        logger.info("Using application default credentials")
        return None, admin_credentials.ApplicationDefault()

    # =========================================================================
    # Teardown
    # =========================================================================

    async def _close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self._admin_app is not None:
            firebase_admin.delete_app(self._admin_app)
            self._admin_app = None
        self._firestore = self._watch_firestore = self._server_firestore = None
