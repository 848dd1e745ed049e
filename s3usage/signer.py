"""
AWS Signature Version 4 request signing for the RGW admin API.

RGW authenticates admin requests with the same SigV4 scheme as the S3
data plane. requests_aws4auth computes the signature; RequestSigner pins
the service scope name and the signed headers, and builds the URL.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote, urlparse

import requests
from requests_aws4auth import AWS4Auth

from .errors import ConfigurationError

# Same set the admin API clients sign with: host;x-amz-content-sha256;x-amz-date
SIGNED_HEADERS = ("host", "x-amz-content-sha256", "x-amz-date")
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

QueryParams = Union[Mapping[str, str], Sequence[Tuple[str, str]], None]


def _uri_encode(value: str, safe: str = "") -> str:
    # Unreserved characters per RFC 3986; quote() already keeps letters and digits
    return quote(value, safe="-_.~" + safe)


def encode_query(query: QueryParams) -> str:
    """Percent-encode (space as %20) and sort query parameters by key, then value."""
    if not query:
        return ""
    items: Iterable[Tuple[str, str]] = query.items() if isinstance(query, Mapping) else query
    encoded = sorted((_uri_encode(str(k)), _uri_encode(str(v))) for k, v in items)
    return "&".join(f"{k}={v}" for k, v in encoded)


def request_url(endpoint: str, path: str, query: QueryParams = None) -> str:
    """
    Join endpoint, path and query into the URL that gets signed and sent.

    Raises ConfigurationError for a malformed endpoint, before anything
    touches the network.
    """
    parsed = urlparse(endpoint or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Invalid endpoint URL: {endpoint!r}")

    # Endpoints may carry a path prefix (e.g. behind a proxy)
    full_path = parsed.path.rstrip("/") + (path if path.startswith("/") else "/" + path)

    url = f"{parsed.scheme}://{parsed.netloc}{_uri_encode(full_path, safe='/')}"
    query_string = encode_query(query)
    if query_string:
        url = f"{url}?{query_string}"
    return url


class RequestSigner:
    """
    SigV4 credentials for one service scope name.

    `auth` is a requests auth handler; pass it as `auth=` and requests signs
    the prepared request right before sending.
    """

    def __init__(self, access_key: str, secret_key: str, region: str, service: str = "s3",
                 signed_headers: Sequence[str] = SIGNED_HEADERS):
        self.access_key = access_key
        self.region = region
        self.service = service
        self.auth = AWS4Auth(access_key, secret_key, region, service,
                             include_hdrs=set(signed_headers))

    @staticmethod
    def headers(url: str) -> Dict[str, str]:
        # Host is signed, so send it verbatim, port included
        return {"Host": urlparse(url).netloc}

    def sign(self, method: str, endpoint: str, path: str, query: QueryParams = None,
             body: Optional[bytes] = None,
             timestamp: Optional[datetime] = None) -> requests.PreparedRequest:
        """
        Build and sign a request without sending it.

        A fixed timestamp gives a reproducible signature; without one the
        current time is used.
        """
        url = request_url(endpoint, path, query)
        headers = self.headers(url)
        if timestamp is not None:
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
            headers["X-Amz-Date"] = timestamp.astimezone(timezone.utc).strftime(AMZ_DATE_FORMAT)

        prepared = requests.Request(method.upper(), url, headers=headers, data=body or None).prepare()
        return self.auth(prepared)


def signers_for(access_key: str, secret_key: str, region: str,
                services: Sequence[str]) -> List[RequestSigner]:
    """One signer per candidate service scope name, in fallback order."""
    return [RequestSigner(access_key, secret_key, region, s) for s in services]
