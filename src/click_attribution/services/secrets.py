"""Secret lookup with an in-process cache"""
from abc import ABC, abstractmethod
from typing import Optional
import logging
import threading

from src.click_attribution.config import Settings

logger = logging.getLogger(__name__)


class SecretProvider(ABC):
    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        pass


class SecretManagerProvider(SecretProvider):
    """Reads the latest version of a secret from Google Cloud Secret Manager."""

    def __init__(self, project_id: str, client=None):
        self.project_id = project_id
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from google.cloud import secretmanager

            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def secret_path(self, name: str) -> str:
        return f"projects/{self.project_id}/secrets/{name}/versions/latest"

    def get(self, name: str) -> Optional[str]:
        from google.api_core import exceptions

        try:
            response = self.client.access_secret_version(name=self.secret_path(name))
        except exceptions.NotFound:
            logger.warning(f"Secret {name} not found in project {self.project_id}")
            return None
        return response.payload.data.decode("utf-8")


class StaticSecretProvider(SecretProvider):
    """Secrets supplied through settings, for local runs and tests."""

    def __init__(self, values: dict[str, str]):
        self.values = dict(values)

    def get(self, name: str) -> Optional[str]:
        return self.values.get(name) or None


class SecretCache:
    def __init__(self, provider: SecretProvider):
        self.provider = provider
        self._values: dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            if name in self._values:
                return self._values[name]

        value = self.provider.get(name)
        if value is not None:
            with self._lock:
                self._values[name] = value
        return value

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


def build_secret_cache(settings: Settings) -> SecretCache:
    if settings.uses_secret_manager:
        return SecretCache(SecretManagerProvider(settings.GCP_PROJECT_ID))

    return SecretCache(StaticSecretProvider({settings.WEBHOOK_TOKEN_SECRET_NAME: settings.WEBHOOK_TOKEN}))
