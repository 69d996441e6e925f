"""Object-storage cache engine (Amazon S3 over plain HTTP).

Uploads go straight to the bucket endpoint with an ownership ACL header.
Downloads and existence checks use the CDN URL when one is configured,
so consumers of the manifest never hit the bucket directly.
"""

from __future__ import annotations

import httpx

from binforge.cache.http import HTTPCacheEngine


class S3CacheEngine(HTTPCacheEngine):
    """HTTP cache engine with bucket / path / CDN URL composition.

    Parameters
    ----------
    bucket:
        Bucket name; uploads go to ``https://{bucket}.s3.amazonaws.com``.
    path:
        Optional key prefix inside the bucket (and under the CDN URL).
    cdn_url:
        Optional public base URL serving the bucket.
    """

    # S3 answers 403 for a missing key when the caller may not list the bucket
    missing_statuses = (403, 404)

    def __init__(
        self,
        bucket: str,
        *,
        path: str | None = None,
        cdn_url: str | None = None,
        extension: str = "xcframework",
        client: httpx.Client | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.bucket = bucket
        self.path = path.strip("/") if path else None
        self.cdn_url = cdn_url.rstrip("/") if cdn_url else None
        super().__init__(
            self._bucket_url(),
            extension=extension,
            client=client,
            timeout=timeout,
        )

    def _bucket_url(self) -> str:
        base = f"https://{self.bucket}.s3.amazonaws.com"
        return f"{base}/{self.path}" if self.path else base

    @property
    def upload_base_url(self) -> str:
        return self._bucket_url()

    @property
    def download_base_url(self) -> str:
        if self.cdn_url is None:
            return self._bucket_url()
        return f"{self.cdn_url}/{self.path}" if self.path else self.cdn_url

    def upload_headers(self) -> dict[str, str]:
        headers = super().upload_headers()
        headers["x-amz-acl"] = "bucket-owner-full-control"
        return headers
