import os
import sys
from pathlib import Path
import unittest
from unittest import mock

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from questlog.infrastructure.resilient_http import (
    CircuitOpenError,
    get_json_with_retry,
    post_json_with_retry,
    reset_circuit_breakers,
)


def _client(handler) -> httpx.Client:
    return httpx.Client(base_url="https://relay.invalid", transport=httpx.MockTransport(handler))


class ResilientHttpTests(unittest.TestCase):
    def tearDown(self) -> None:
        reset_circuit_breakers()

    def test_returns_json_payload_on_success(self) -> None:
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json={"messages": [], "cursor": 0})

        payload = get_json_with_retry(_client(handler), "/channels/quests/messages", retries=0)

        self.assertEqual({"messages": [], "cursor": 0}, payload)
        self.assertEqual(["/channels/quests/messages"], calls)

    def test_post_sends_json_body_and_tolerates_empty_response(self) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(204)

        payload = post_json_with_retry(_client(handler), "/channels/quests/messages", payload={"type": "apply"})

        self.assertEqual({}, payload)
        self.assertIn(b'"type"', bodies[0])

    def test_retries_retryable_status_then_succeeds(self) -> None:
        responses = [httpx.Response(503), httpx.Response(200, json={"ok": True})]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        payload = get_json_with_retry(_client(handler), "/flaky", retries=1, backoff_seconds=0.0)

        self.assertEqual({"ok": True}, payload)
        self.assertEqual([], responses)

    def test_non_retryable_status_raises_immediately(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(404)

        with self.assertRaises(httpx.HTTPStatusError):
            get_json_with_retry(_client(handler), "/missing", retries=3)
        self.assertEqual(1, len(calls))

    def test_circuit_opens_after_threshold_and_short_circuits_next_call(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            raise httpx.ConnectTimeout("timeout", request=request)

        client = _client(handler)
        env = {
            "QUESTLOG_HTTP_CIRCUIT_BREAKER_ENABLED": "1",
            "QUESTLOG_HTTP_CIRCUIT_FAILURE_THRESHOLD": "3",
            "QUESTLOG_HTTP_CIRCUIT_RESET_SECONDS": "600",
        }

        with mock.patch.dict(os.environ, env, clear=False):
            for _ in range(3):
                with self.assertRaises(httpx.TimeoutException):
                    get_json_with_retry(client, "/timeout", retries=0)

            calls_before = len(calls)
            with self.assertRaises(CircuitOpenError):
                get_json_with_retry(client, "/timeout", retries=0)
            self.assertEqual(calls_before, len(calls))

    def test_disabled_circuit_keeps_calling(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)
        with mock.patch.dict(os.environ, {"QUESTLOG_HTTP_CIRCUIT_BREAKER_ENABLED": "0"}, clear=False):
            for _ in range(5):
                with self.assertRaises(httpx.ConnectError):
                    get_json_with_retry(client, "/down", retries=0)

        self.assertEqual(5, len(calls))


if __name__ == "__main__":
    unittest.main()
