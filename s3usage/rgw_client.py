"""
RGW Admin API client.
"""

import json
import logging
import time
from typing import Any, List, Optional

import requests

from .errors import AuthenticationError, ConnectivityError, DecodeError
from .models import BucketResult, BucketStatsPayload, CollectorConfig, UsageSample, utcnow
from .signer import QueryParams, RequestSigner, request_url, signers_for

logger = logging.getLogger(__name__)

BUCKET_PATH = "/admin/bucket"


class RGWAdminClient:
    """Interface to the RGW admin REST API (/admin/bucket)."""

    def __init__(self, config: CollectorConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.endpoint = config.endpoint
        self.timeout = config.timeout
        self.session = session or requests.Session()
        self._signers: List[RequestSigner] = signers_for(
            config.access_key, config.secret_key, config.region, config.signing_services
        )
        # Index of the service scope name the server last accepted
        self._active = 0

    @property
    def service(self) -> str:
        """Service scope name currently used for signing."""
        return self._signers[self._active].service

    def _send(self, signer: RequestSigner, method: str, path: str,
              query: QueryParams, body: Optional[bytes]) -> bytes:
        """Execute one request, signed by the session via signer.auth. Returns the response body."""
        url = request_url(self.endpoint, path, query)
        logger.debug("Executing request: %s %s (service=%s)", method, url, signer.service)

        try:
            response = self.session.request(
                method,
                url,
                headers=signer.headers(url),
                data=body or None,
                auth=signer.auth,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ConnectivityError(f"Request timed out after {self.timeout}s: {url}") from e
        except requests.exceptions.RequestException as e:
            raise ConnectivityError(f"Failed to execute request {url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise AuthenticationError(
                f"API request failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        return response.content

    def _execute(self, method: str, path: str, query: QueryParams = None,
                 body: Optional[bytes] = None) -> bytes:
        """
        Execute a signed request, walking the configured service scope names.

        A 403 moves on to the next candidate name; any other failure is final.
        The first accepted name sticks for the rest of this client's life.
        """
        last = len(self._signers) - 1
        index = self._active
        while True:
            signer = self._signers[index]
            try:
                content = self._send(signer, method, path, query, body)
            except AuthenticationError as e:
                if e.status_code != 403 or index == last:
                    raise
                logger.warning("Signature with service scope %r rejected (403), trying %r",
                               signer.service, self._signers[index + 1].service)
                index += 1
                continue

            if index != self._active:
                logger.info("Admin API accepted service scope %r", signer.service)
                self._active = index
            return content

    @staticmethod
    def _decode(content: bytes, what: str) -> Any:
        try:
            return json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Failed to decode {what} response: {e}") from e

    def list_buckets(self) -> List[str]:
        """
        Get all bucket names.
        Note: the admin API returns all buckets at once (no pagination).
        """
        data = self._decode(self._execute("GET", BUCKET_PATH), "bucket list")

        if not isinstance(data, list):
            raise DecodeError(f"Unexpected bucket list format: {type(data).__name__}")

        buckets = []
        for item in data:
            if isinstance(item, str):
                buckets.append(item)
            elif isinstance(item, dict):
                # Some versions return dicts with 'bucket' key
                name = item.get('bucket') or item.get('name', '')
                if name:
                    buckets.append(name)
            else:
                raise DecodeError(f"Unexpected bucket list entry: {item!r}")

        return buckets

    def get_bucket_stats(self, bucket_name: str) -> UsageSample:
        """Get statistics for a single bucket as a usage sample."""
        start_time = time.time()

        content = self._execute("GET", BUCKET_PATH, query=[("bucket", bucket_name), ("stats", "true")])
        raw = self._decode(content, f"bucket stats ({bucket_name})")
        if not isinstance(raw, dict):
            raise DecodeError(f"Unexpected bucket stats format for {bucket_name}: {type(raw).__name__}")

        try:
            payload = BucketStatsPayload.from_json(raw, bucket_name)
        except (TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"Malformed usage data for bucket {bucket_name}: {e}") from e

        logger.debug(
            "Bucket %s: owner=%s zonegroup=%s placement=%s created=%s size_kb=%d size_kb_actual=%d "
            "objects=%d (%.0fms)",
            bucket_name, payload.owner, payload.zonegroup, payload.placement_rule,
            payload.creation_time, payload.size_kb, payload.size_kb_actual,
            payload.num_objects, (time.time() - start_time) * 1000,
        )

        try:
            return UsageSample(
                bucket_name=bucket_name,
                size_bytes=payload.size_bytes,
                object_count=payload.num_objects,
                timestamp=utcnow(),
            )
        except ValueError as e:
            raise DecodeError(str(e)) from e

    def fetch_all_bucket_results(self) -> List[BucketResult]:
        """
        List buckets, then fetch stats for each one sequentially.

        A failure for one bucket is captured in its result and never aborts
        the batch. Only a failure to list buckets raises.
        """
        results = []
        for bucket_name in self.list_buckets():
            logger.info("Collecting statistics for bucket: %s", bucket_name)
            try:
                results.append(BucketResult(bucket_name, sample=self.get_bucket_stats(bucket_name)))
            except (AuthenticationError, ConnectivityError, DecodeError) as e:
                logger.error("Error getting usage for bucket %s: %s", bucket_name, e)
                results.append(BucketResult(bucket_name, error=e))
        return results

    def get_all_buckets_usage(self) -> List[UsageSample]:
        """Usage for every bucket that could be fetched; failed buckets are dropped."""
        return [r.sample for r in self.fetch_all_bucket_results() if r.ok]

    def close(self):
        self.session.close()
