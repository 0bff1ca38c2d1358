"""Pytest fixtures for gateway, tracker and provider client tests."""

import json
from datetime import datetime

import httpx
import pytest

from paygate.config import Settings
from paygate.services.daraja_client import DarajaClient, STK_PUSH_PATH, STK_QUERY_PATH


class FakeDaraja:
    """httpx.MockTransport handler that imitates the Daraja sandbox."""

    def __init__(self):
        self.requests = []
        self.token = "test-token"
        self.auth_status = 200
        self.auth_body = None
        self.push_status = 200
        self.push_body = None
        self.push_error = None
        self.query_body = {
            "ResponseCode": "0",
            "ResultCode": "0",
            "ResultDesc": "The service request is processed successfully.",
        }
        self._checkouts = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/oauth/v1/generate":
            body = self.auth_body
            if body is None:
                body = {"access_token": self.token, "expires_in": "3599"} if self.token else {}
            return httpx.Response(self.auth_status, json=body)

        if path == STK_PUSH_PATH:
            if self.push_error is not None:
                raise self.push_error
            if self.push_body is not None:
                return httpx.Response(self.push_status, json=self.push_body)
            self._checkouts += 1
            return httpx.Response(self.push_status, json={
                "MerchantRequestID": f"29115-{self._checkouts}",
                "CheckoutRequestID": f"ws_CO_{self._checkouts}",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            })

        if path == STK_QUERY_PATH:
            payload = json.loads(request.content)
            return httpx.Response(200, json={
                **self.query_body,
                "CheckoutRequestID": payload["CheckoutRequestID"],
            })

        return httpx.Response(404, json={"errorMessage": "Unknown path"})

    def requests_to(self, path: str):
        return [r for r in self.requests if r.url.path == path]

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def daraja_client(self, **overrides) -> DarajaClient:
        values = {
            "consumer_key": "key",
            "consumer_secret": "secret",
            "shortcode": "174379",
            "passkey": "passkey",
            "callback_url": "https://example.com/callback",
            "account_reference": "HELB Disbursement",
            "transaction_desc": "HELB Disbursement",
            "sandbox": True,
            "http_client": self.http_client(),
            "now": lambda: datetime(2025, 10, 17, 14, 35, 0),
        }
        values.update(overrides)
        return DarajaClient(**values)


class RecordingScheduler:
    """Stand-in for CompletionScheduler that records jobs and runs them on demand."""

    def __init__(self):
        self.jobs = {}
        self.interval_jobs = {}

    def schedule_once(self, job_id, job_func, delay_seconds=0, **kwargs):
        self.jobs[job_id] = (job_func, delay_seconds, kwargs)
        return job_id

    def add_interval_job(self, job_id, job_func, interval_seconds, **kwargs):
        self.interval_jobs[job_id] = (job_func, interval_seconds, kwargs)
        return job_id

    async def run(self, job_id):
        job_func, _, kwargs = self.jobs.pop(job_id)
        return await job_func(**kwargs)


@pytest.fixture
def fake_daraja():
    return FakeDaraja()


@pytest.fixture
def recording_scheduler():
    return RecordingScheduler()


@pytest.fixture
def settings_factory(tmp_path):
    """Build Settings from explicit values only (no .env, test credentials)."""

    def make(**overrides):
        values = {
            "consumer_key": "key",
            "consumer_secret": "secret",
            "passkey": "passkey",
            "shortcode": "174379",
            "callback_url": "https://example.com/callback",
            "sandbox": True,
            "demo_completion_delay_seconds": 0.05,
            "mock_delay_seconds": 0,
            "audit_log_dir": str(tmp_path / "logs"),
            "database_path": str(tmp_path / "paygate.db"),
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return make
