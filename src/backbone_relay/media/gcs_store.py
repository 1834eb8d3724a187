"""Google Cloud Storage media store with V4 signed retrieval URLs."""

from __future__ import annotations

from datetime import timedelta

from google.cloud import storage

from backbone_relay.errors import ConfigurationError


class GcsMediaStore:
    """MediaStore implementation: upload bytes, return a signed GET URL.

    The storage client is created on first save, so an app without a media
    bucket still starts; each save then fails with ConfigurationError and the
    attachment is skipped.
    """

    def __init__(
        self,
        bucket_name: str,
        *,
        url_ttl: timedelta,
        client: storage.Client | None = None,
    ) -> None:
        self._bucket_name = bucket_name
        self._url_ttl = url_ttl
        self._client = client

    def _bucket(self) -> storage.Bucket:
        if not self._bucket_name:
            raise ConfigurationError("media bucket not configured")
        if self._client is None:
            self._client = storage.Client()
        return self._client.bucket(self._bucket_name)

    def save(self, path: str, data: bytes, content_type: str, metadata: dict[str, str]) -> str:
        blob = self._bucket().blob(path)
        blob.metadata = metadata
        blob.upload_from_string(data, content_type=content_type)
        return blob.generate_signed_url(
            version="v4",
            expiration=self._url_ttl,
            method="GET",
        )
