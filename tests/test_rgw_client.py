"""
Tests for the RGW admin API client.

The HTTP session is mocked; no RGW endpoint is needed.
"""

import json
import os
import sys
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import requests
from requests_aws4auth import AWS4Auth

# Add repo root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from s3usage.errors import AuthenticationError, ConfigurationError, ConnectivityError, DecodeError
from s3usage.models import CollectorConfig
from s3usage.rgw_client import RGWAdminClient


def make_response(status_code: int = 200, payload=None, raw: bytes = None) -> Mock:
    """Build a fake requests.Response."""
    content = raw if raw is not None else json.dumps(payload).encode()
    response = Mock()
    response.status_code = status_code
    response.content = content
    response.text = content.decode(errors='replace')
    return response


def bucket_stats_json(name: str, size_kb: int, num_objects: int) -> dict:
    """Mirror of GET /admin/bucket?bucket=<name>&stats=true."""
    return {
        "bucket": name,
        "id": "c0ffee.4242.1",
        "owner": "tenant-user",
        "zonegroup": "zg-1",
        "placement_rule": "default-placement",
        "creation_time": "2020-03-01T10:00:00.000000Z",
        "usage": {
            "rgw.main": {
                "size_kb": size_kb,
                "size_kb_actual": size_kb + 4,
                "num_objects": num_objects,
            }
        },
    }


class RoutingSession:
    """Fake session answering per bucket; records every call."""

    def __init__(self, buckets, stats=None, failing=()):
        self.buckets = buckets
        self.stats = stats or {}
        self.failing = set(failing)
        self.calls = []
        self.closed = False

    def request(self, method, url, headers=None, data=None, auth=None, timeout=None):
        self.calls.append((method, url, headers, timeout))
        if "bucket=" not in url:
            return make_response(200, self.buckets)
        name = url.split("bucket=")[1].split("&")[0]
        if name in self.failing:
            return make_response(500, raw=b'{"Code":"UnknownError"}')
        size_kb, objects = self.stats.get(name, (1, 1))
        return make_response(200, bucket_stats_json(name, size_kb, objects))

    def close(self):
        self.closed = True


class SigningSession:
    """Fake session that signs like requests does, then replays queued responses."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.sent = []

    def request(self, method, url, headers=None, data=None, auth=None, timeout=None):
        prepared = requests.Request(method, url, headers=headers, data=data).prepare()
        if auth is not None:
            prepared = auth(prepared)
        self.sent.append(prepared)
        # The last response repeats
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]

    def close(self):
        pass


class TestRGWAdminClient(unittest.TestCase):
    """Test admin API calls and response mapping."""

    def setUp(self):
        self.config = CollectorConfig(
            endpoint="http://rgw.example:8080",
            access_key="ACCESS",
            secret_key="SECRET",
            region="default",
            timeout=30,
        )
        self.session = Mock()

    def client(self, session=None, config=None) -> RGWAdminClient:
        return RGWAdminClient(config or self.config, session=session or self.session)

    def test_list_buckets(self):
        self.session.request.return_value = make_response(200, ["b1", "b2"])

        self.assertEqual(self.client().list_buckets(), ["b1", "b2"])

        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("GET", "http://rgw.example:8080/admin/bucket"))
        self.assertEqual(kwargs['timeout'], 30)
        self.assertEqual(kwargs['headers'], {"Host": "rgw.example:8080"})
        self.assertIsInstance(kwargs['auth'], AWS4Auth)

    def test_requests_are_signed(self):
        """The auth handler passed to the session produces a SigV4 header."""
        session = SigningSession([make_response(200, ["b1"])])

        self.client(session=session).list_buckets()

        [sent] = session.sent
        self.assertTrue(sent.headers['Authorization'].startswith(
            "AWS4-HMAC-SHA256 Credential=ACCESS/"))
        self.assertIn("SignedHeaders=host;x-amz-content-sha256;x-amz-date,", sent.headers['Authorization'])
        self.assertEqual(sent.headers['Host'], "rgw.example:8080")

    def test_list_buckets_dict_entries(self):
        """Some RGW versions return objects instead of names."""
        self.session.request.return_value = make_response(200, [{"bucket": "b1"}, "b2", {"name": "b3"}])
        self.assertEqual(self.client().list_buckets(), ["b1", "b2", "b3"])

    def test_list_buckets_empty(self):
        self.session.request.return_value = make_response(200, [])
        self.assertEqual(self.client().list_buckets(), [])

    def test_list_buckets_malformed_json(self):
        self.session.request.return_value = make_response(200, raw=b"<html>not json")
        with self.assertRaises(DecodeError):
            self.client().list_buckets()

    def test_list_buckets_not_a_list(self):
        self.session.request.return_value = make_response(200, {"bucket": "b1"})
        with self.assertRaises(DecodeError):
            self.client().list_buckets()

    def test_non_2xx_is_authentication_error(self):
        """Status and body are surfaced on the error."""
        self.session.request.return_value = make_response(403, raw=b'{"Code":"SignatureDoesNotMatch"}')

        with self.assertRaises(AuthenticationError) as ctx:
            self.client().list_buckets()

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertIn("SignatureDoesNotMatch", ctx.exception.body)
        self.assertIn("403", str(ctx.exception))

    def test_timeout_is_connectivity_error(self):
        self.session.request.side_effect = requests.exceptions.ReadTimeout("read timed out")
        with self.assertRaises(ConnectivityError):
            self.client().list_buckets()
        # No retry
        self.assertEqual(self.session.request.call_count, 1)

    def test_connection_error(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(ConnectivityError):
            self.client().list_buckets()

    def test_invalid_endpoint_fails_before_network(self):
        config = CollectorConfig(endpoint="not a url", access_key="a", secret_key="s")
        with self.assertRaises(ConfigurationError):
            self.client(config=config).list_buckets()
        self.session.request.assert_not_called()

    def test_get_bucket_stats(self):
        """Size is converted from KiB to bytes; timestamp is retrieval time."""
        self.session.request.return_value = make_response(200, bucket_stats_json("b1", 4, 7))

        before = datetime.now(timezone.utc)
        sample = self.client().get_bucket_stats("b1")
        after = datetime.now(timezone.utc)

        self.assertEqual(sample.bucket_name, "b1")
        self.assertEqual(sample.size_bytes, 4096)
        self.assertEqual(sample.object_count, 7)
        self.assertIsNone(sample.id)
        self.assertTrue(before <= sample.timestamp <= after)
        # Not the bucket's creation time
        self.assertGreater(sample.timestamp - datetime(2020, 3, 1, tzinfo=timezone.utc), timedelta(days=1))

        args, _ = self.session.request.call_args
        self.assertEqual(args[1], "http://rgw.example:8080/admin/bucket?bucket=b1&stats=true")

    def test_get_bucket_stats_without_main_usage(self):
        """Empty buckets report no rgw.main section."""
        raw = bucket_stats_json("empty", 0, 0)
        raw["usage"] = {}
        self.session.request.return_value = make_response(200, raw)

        sample = self.client().get_bucket_stats("empty")
        self.assertEqual((sample.size_bytes, sample.object_count), (0, 0))

    def test_get_bucket_stats_malformed(self):
        self.session.request.return_value = make_response(200, raw=b"{truncated")
        with self.assertRaises(DecodeError):
            self.client().get_bucket_stats("b1")

        self.session.request.return_value = make_response(200, ["b1"])
        with self.assertRaises(DecodeError):
            self.client().get_bucket_stats("b1")

    def test_get_bucket_stats_negative_usage(self):
        self.session.request.return_value = make_response(200, bucket_stats_json("b1", -1, 3))
        with self.assertRaises(DecodeError):
            self.client().get_bucket_stats("b1")

    def test_all_buckets_usage_partial_failure(self):
        """One failing bucket is dropped silently; no batch-level error."""
        session = RoutingSession(["b1", "b2"], stats={"b1": (2, 5)}, failing={"b2"})

        usages = self.client(session=session).get_all_buckets_usage()

        self.assertEqual(len(usages), 1)
        self.assertEqual(usages[0].bucket_name, "b1")
        self.assertEqual(usages[0].size_bytes, 2048)
        # list + one call per bucket, sequential and without retries
        self.assertEqual(len(session.calls), 3)

    def test_bucket_results_record_errors(self):
        session = RoutingSession(["b1", "b2", "b3"], failing={"b2"})

        results = self.client(session=session).fetch_all_bucket_results()

        self.assertEqual([r.bucket_name for r in results], ["b1", "b2", "b3"])
        self.assertEqual([r.ok for r in results], [True, False, True])
        self.assertIsInstance(results[1].error, AuthenticationError)
        self.assertEqual(results[1].error.status_code, 500)

    def test_list_failure_aborts_batch(self):
        self.session.request.return_value = make_response(500, raw=b"boom")
        with self.assertRaises(AuthenticationError):
            self.client().get_all_buckets_usage()

    def test_close(self):
        session = RoutingSession([])
        self.client(session=session).close()
        self.assertTrue(session.closed)


class TestSigningServiceFallback(unittest.TestCase):
    """Service scope names are tried in the configured order on 403."""

    def make_client(self, services, responses) -> RGWAdminClient:
        config = CollectorConfig(endpoint="http://rgw", access_key="a", secret_key="s",
                                 signing_services=services)
        self.session = SigningSession(responses)
        return RGWAdminClient(config, session=self.session)

    def scopes(self):
        # Credential=a/<date>/<region>/<service>/aws4_request
        return [p.headers['Authorization'].split('/')[3] for p in self.session.sent]

    def test_default_has_no_fallback(self):
        client = self.make_client(("s3",), [make_response(403, raw=b"denied")])

        with self.assertRaises(AuthenticationError):
            client.list_buckets()
        self.assertEqual(self.scopes(), ["s3"])

    def test_falls_back_on_403_and_sticks(self):
        client = self.make_client(("s3", "rgw"), [
            make_response(403, raw=b"denied"),
            make_response(200, ["b1"]),
            make_response(200, ["b1"]),
        ])

        self.assertEqual(client.list_buckets(), ["b1"])
        self.assertEqual(client.service, "rgw")

        client.list_buckets()
        self.assertEqual(self.scopes(), ["s3", "rgw", "rgw"])

    def test_no_fallback_on_other_errors(self):
        client = self.make_client(("s3", "rgw"), [make_response(500, raw=b"oops")])

        with self.assertRaises(AuthenticationError):
            client.list_buckets()
        self.assertEqual(self.scopes(), ["s3"])

    def test_all_rejected(self):
        client = self.make_client(("s3", "rgw"), [make_response(403, raw=b"denied")])

        with self.assertRaises(AuthenticationError) as ctx:
            client.list_buckets()
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(self.scopes(), ["s3", "rgw"])


if __name__ == '__main__':
    unittest.main()
