"""
Firebase configuration.

Client config mirrors the Firebase web SDK config object. Server config
adds the service account, which never leaves the server process.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import SecretStr, model_validator

from app.config import Settings

from .base import CamelModel, ConfigLoader


class FirebaseClientConfig(CamelModel):
    api_key: str
    project_id: str
    auth_domain: Optional[str] = None
    storage_bucket: Optional[str] = None
    messaging_sender_id: Optional[str] = None
    app_id: Optional[str] = None
    measurement_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def default_project_hosts(cls, data: Any) -> Any:
        """Derive authDomain / storageBucket from the project id when unset."""
        if isinstance(data, dict):
            project_id = data.get("projectId") or data.get("project_id")
            if project_id:
                data = dict(data)
                if not (data.get("authDomain") or data.get("auth_domain")):
                    data["authDomain"] = f"{project_id}.firebaseapp.com"
                if not (data.get("storageBucket") or data.get("storage_bucket")):
                    data["storageBucket"] = f"{project_id}.appspot.com"
        return data


class FirebaseServerConfig(CamelModel):
    project_id: str
    credentials_base64: Optional[SecretStr] = None
    credentials_path: Optional[str] = None


class FirebaseConfigLoader(ConfigLoader):
    name = "firebase"
    client_model = FirebaseClientConfig
    server_model = FirebaseServerConfig
    required_client = {
        "apiKey": "PUBLIC_FIREBASE_API_KEY",
        "projectId": "PUBLIC_FIREBASE_PROJECT_ID",
    }
    required_server = {
        "projectId": "PUBLIC_FIREBASE_PROJECT_ID",
    }

    def client_fields(self, settings: Settings) -> dict[str, Any]:
        return {
            "apiKey": settings.PUBLIC_FIREBASE_API_KEY,
            "projectId": settings.PUBLIC_FIREBASE_PROJECT_ID,
            "authDomain": settings.PUBLIC_FIREBASE_AUTH_DOMAIN,
            "storageBucket": settings.PUBLIC_FIREBASE_STORAGE_BUCKET,
            "messagingSenderId": settings.PUBLIC_FIREBASE_MESSAGING_SENDER_ID,
            "appId": settings.PUBLIC_FIREBASE_APP_ID,
            "measurementId": settings.PUBLIC_FIREBASE_MEASUREMENT_ID,
        }

    def server_fields(self, settings: Settings) -> dict[str, Any]:
        return {
            "projectId": settings.PUBLIC_FIREBASE_PROJECT_ID,
            "credentialsBase64": settings.FIREBASE_CREDS_BASE64,
            "credentialsPath": settings.FIREBASE_CRED_PATH,
        }
