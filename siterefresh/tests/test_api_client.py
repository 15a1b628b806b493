"""Tests for siterefresh.api_client."""

from __future__ import annotations

import unittest
from typing import Any
from unittest.mock import MagicMock

import requests

from siterefresh.api_client import (
    ExponentialBackoff,
    FixedBackoff,
    RemoteServiceError,
    ServiceClient,
    call_with_retry,
    call_with_retry_result,
    is_transient,
)


def _resp(status: int = 200, payload: Any = None, text: str = "") -> MagicMock:
    r = MagicMock()
    r.status_code = status
    r.text = text
    if isinstance(payload, Exception):
        r.json.side_effect = payload
    else:
        r.json.return_value = payload
    return r


def _chat_payload(content: str) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


# ---------------------------------------------------------------------------
# Backoff / transient classification
# ---------------------------------------------------------------------------


class TestBackoff(unittest.TestCase):
    def test_fixed(self) -> None:
        b = FixedBackoff(2.0)
        self.assertEqual([b.delay(i) for i in (1, 2, 3)], [2.0, 2.0, 2.0])

    def test_exponential_is_capped(self) -> None:
        b = ExponentialBackoff(1.0, factor=2.0, max_delay_s=5.0)
        self.assertEqual([b.delay(i) for i in (1, 2, 3, 4)], [1.0, 2.0, 4.0, 5.0])


class TestIsTransient(unittest.TestCase):
    def test_network_errors(self) -> None:
        self.assertTrue(is_transient(requests.ConnectionError("reset")))
        self.assertTrue(is_transient(requests.Timeout("slow")))

    def test_http_error_by_status(self) -> None:
        for code, expected in ((429, True), (503, True), (400, False), (401, False)):
            resp = MagicMock(status_code=code)
            self.assertEqual(is_transient(requests.HTTPError(response=resp)), expected, code)

    def test_remote_service_error_flag(self) -> None:
        self.assertTrue(is_transient(RemoteServiceError("x", transient=True)))
        self.assertFalse(is_transient(RemoteServiceError("x")))

    def test_other_exceptions(self) -> None:
        self.assertFalse(is_transient(ValueError("bad")))


# ---------------------------------------------------------------------------
# call_with_retry
# ---------------------------------------------------------------------------


class TestCallWithRetry(unittest.TestCase):
    def test_success_first_try(self) -> None:
        sleeps: list[float] = []
        res = call_with_retry_result(lambda: "ok", sleep=sleeps.append)
        self.assertEqual(res.value, "ok")
        self.assertEqual(res.attempts, 1)
        self.assertEqual(sleeps, [])

    def test_transient_failures_then_success(self) -> None:
        op = MagicMock(side_effect=[requests.ConnectionError("a"), requests.Timeout("b"), "done"])
        sleeps: list[float] = []
        res = call_with_retry_result(op, max_attempts=3, backoff=FixedBackoff(0.5), sleep=sleeps.append)
        self.assertEqual(res.value, "done")
        self.assertEqual(res.attempts, 3)
        self.assertEqual(sleeps, [0.5, 0.5])

    def test_exhaustion_raises_with_attempt_count(self) -> None:
        op = MagicMock(side_effect=RemoteServiceError("busy", status_code=503, transient=True))
        with self.assertRaises(RemoteServiceError) as ctx:
            call_with_retry(op, max_attempts=3, backoff=FixedBackoff(0), sleep=lambda _s: None)
        self.assertEqual(op.call_count, 3)
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertTrue(ctx.exception.transient)

    def test_non_transient_is_not_retried(self) -> None:
        op = MagicMock(side_effect=RemoteServiceError("unauthorized", status_code=401))
        sleep = MagicMock()
        with self.assertRaises(RemoteServiceError) as ctx:
            call_with_retry(op, max_attempts=5, sleep=sleep)
        self.assertEqual(op.call_count, 1)
        self.assertEqual(ctx.exception.attempts, 1)
        sleep.assert_not_called()

    def test_unexpected_exception_is_wrapped(self) -> None:
        op = MagicMock(side_effect=[requests.ConnectionError("x"), KeyError("boom")])
        with self.assertRaises(RemoteServiceError) as ctx:
            call_with_retry(op, max_attempts=3, backoff=FixedBackoff(0), sleep=lambda _s: None)
        self.assertEqual(ctx.exception.attempts, 2)
        self.assertIsInstance(ctx.exception.cause, KeyError)

    def test_max_attempts_floor_is_one(self) -> None:
        op = MagicMock(side_effect=requests.Timeout("t"))
        with self.assertRaises(RemoteServiceError):
            call_with_retry(op, max_attempts=0, sleep=lambda _s: None)
        self.assertEqual(op.call_count, 1)


# ---------------------------------------------------------------------------
# ServiceClient
# ---------------------------------------------------------------------------


class TestServiceClient(unittest.TestCase):
    def _client(self, session: MagicMock, **kwargs: Any) -> ServiceClient:
        kwargs.setdefault("sleep", lambda _s: None)
        kwargs.setdefault("backoff", FixedBackoff(0))
        return ServiceClient(base_url="https://api.example.test/v1/", api_key="sk-test", session=session, **kwargs)

    def test_requires_api_key(self) -> None:
        with self.assertRaises(ValueError):
            ServiceClient(base_url="https://x", api_key="", session=MagicMock())

    def test_sets_auth_header_and_strips_slash(self) -> None:
        session = MagicMock()
        session.headers = {}
        client = self._client(session)
        self.assertEqual(client.base_url, "https://api.example.test/v1")
        self.assertEqual(session.headers["Authorization"], "Bearer sk-test")

    def test_generate_text(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.return_value = _resp(200, _chat_payload('{"a": "b"}'))
        client = self._client(session, timeout=(1.0, 2.0))

        self.assertEqual(client.generate_text("write copy"), '{"a": "b"}')
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], "https://api.example.test/v1/chat/completions")
        self.assertEqual(kwargs["timeout"], (1.0, 2.0))
        self.assertEqual(kwargs["json"]["messages"][1]["content"], "write copy")

    def test_translate_text_retries_on_5xx(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.side_effect = [_resp(502, text="bad gateway"), _resp(200, _chat_payload("{}"))]
        client = self._client(session)
        self.assertEqual(client.translate_text('{"k": "v"}', "de"), "{}")
        self.assertEqual(session.post.call_count, 2)
        prompt = session.post.call_args.kwargs["json"]["messages"][1]["content"]
        self.assertIn("German", prompt)

    def test_4xx_surfaces_immediately(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.return_value = _resp(401, text="invalid key")
        client = self._client(session)
        with self.assertRaises(RemoteServiceError) as ctx:
            client.generate_text("x")
        self.assertEqual(session.post.call_count, 1)
        self.assertEqual(ctx.exception.status_code, 401)

    def test_empty_completion_raises(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.return_value = _resp(200, _chat_payload("   "))
        with self.assertRaises(RemoteServiceError):
            self._client(session).generate_text("x")

    def test_generate_image_returns_payload(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.return_value = _resp(200, {"data": [{"b64_json": "aGVsbG8="}]})
        self.assertEqual(self._client(session).generate_image("banner"), "aGVsbG8=")
        body = session.post.call_args.kwargs["json"]
        self.assertEqual(body["response_format"], "b64_json")

    def test_generate_image_is_single_attempt(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.return_value = _resp(503)
        with self.assertRaises(RemoteServiceError) as ctx:
            self._client(session).generate_image("banner")
        self.assertTrue(ctx.exception.transient)
        self.assertEqual(session.post.call_count, 1)

    def test_invalid_json_body(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.return_value = _resp(200, ValueError("not json"))
        with self.assertRaises(RemoteServiceError):
            self._client(session).generate_image("banner")


class TestCheckStatus(unittest.TestCase):
    def _client(self, session: MagicMock) -> ServiceClient:
        session.headers = {}
        return ServiceClient(base_url="https://api.example.test/v1", api_key="k", session=session)

    def test_available(self) -> None:
        session = MagicMock()
        session.get.return_value = _resp(200, {"data": [{"id": "m1"}, {"id": "m2"}]})
        st = self._client(session).check_status()
        self.assertTrue(st.available)
        self.assertEqual(st.models, 2)

    def test_unexpected_format(self) -> None:
        session = MagicMock()
        session.get.return_value = _resp(200, {"models": []})
        self.assertFalse(self._client(session).check_status().available)

    def test_http_error(self) -> None:
        session = MagicMock()
        session.get.return_value = _resp(500)
        st = self._client(session).check_status()
        self.assertFalse(st.available)
        self.assertEqual(st.status_code, 500)

    def test_network_error_does_not_raise(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        st = self._client(session).check_status()
        self.assertFalse(st.available)
        self.assertEqual(st.status_code, 0)


if __name__ == "__main__":
    unittest.main()
