from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Dict, Protocol
from urllib.parse import quote, urlparse

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, generate_blob_sas

from portfolios.errors import UpstreamError


@dataclass(frozen=True)
class WriteGrant:
    url: str
    method: str = "PUT"
    headers: Dict[str, str] = field(default_factory=dict)


class ObjectStore(Protocol):
    def write_grant(self, key: str, content_type: str, expires_in: int) -> WriteGrant: ...

    def object_exists(self, key: str) -> bool: ...

    def object_url(self, key: str) -> str: ...

    def delete_object(self, key: str) -> None: ...

    def owns_url(self, url: str) -> bool: ...


@dataclass(frozen=True)
class StorageConfig:
    connection_string: str
    container: str
    public_base_url: str | None


def load_storage_config() -> StorageConfig:
    conn = os.getenv("BLOB_CONNECTION_STRING", "").strip()
    if not conn:
        raise RuntimeError("BLOB_CONNECTION_STRING is required for uploads")
    public_base_url = os.getenv("BLOB_PUBLIC_BASE_URL", "").strip() or None
    return StorageConfig(
        connection_string=conn,
        container=os.getenv("BLOB_CONTAINER", "portfolio-media"),
        public_base_url=public_base_url.rstrip("/") if public_base_url else None,
    )


class BlobObjectStore:
    """Azure Blob Storage backend issuing short-lived SAS write grants."""

    def __init__(self, config: StorageConfig, service: BlobServiceClient | None = None) -> None:
        self.config = config
        self._service = service or BlobServiceClient.from_connection_string(config.connection_string)

    def _blob(self, key: str):
        return self._service.get_blob_client(container=self.config.container, blob=key)

    def write_grant(self, key: str, content_type: str, expires_in: int) -> WriteGrant:
        blob = self._blob(key)
        sas = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self.config.container,
            blob_name=key,
            account_key=self._service.credential.account_key,
            permission=BlobSasPermissions(create=True, write=True),
            expiry=datetime.now(UTC) + timedelta(seconds=expires_in),
        )
        return WriteGrant(
            url=f"{blob.url}?{sas}",
            method="PUT",
            headers={"x-ms-blob-type": "BlockBlob", "Content-Type": content_type},
        )

    def object_exists(self, key: str) -> bool:
        try:
            return bool(self._blob(key).exists())
        except AzureError as exc:
            raise UpstreamError("object_store_unavailable", str(exc)) from exc

    def object_url(self, key: str) -> str:
        if self.config.public_base_url:
            return f"{self.config.public_base_url}/{quote(key)}"
        return self._blob(key).url

    def delete_object(self, key: str) -> None:
        try:
            self._blob(key).delete_blob()
        except ResourceNotFoundError:
            return
        except AzureError as exc:
            raise UpstreamError("object_store_unavailable", str(exc)) from exc

    def owns_url(self, url: str) -> bool:
        target = urlparse(url)
        account = urlparse(self._service.url)
        return (
            target.scheme in {"http", "https"}
            and target.netloc == account.netloc
            and target.path.startswith(f"{account.path.rstrip('/')}/{self.config.container}/")
        )


@lru_cache(maxsize=1)
def get_object_store() -> ObjectStore:
    return BlobObjectStore(load_storage_config())
