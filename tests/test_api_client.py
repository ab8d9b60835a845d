import io
import json
import urllib.error

import pytest

from kiteline import build_dispatch_requests, load_pipeline_from_string
from kiteline.api import APIClient, APIError


class FakeResponse:
    def __init__(self, body: str):
        self._body = body.encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def requests(valid_yaml):
    return build_dispatch_requests(load_pipeline_from_string(valid_yaml))


def test_create_run_posts_every_step(monkeypatch, requests):
    sent = {}

    def fake_urlopen(req, timeout=None):
        sent["url"] = req.full_url
        sent["method"] = req.get_method()
        sent["body"] = json.loads(req.data.decode("utf-8"))
        return FakeResponse(json.dumps({"run_id": "r-1", "step_ids": ["a", "b", "c"]}))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    result = APIClient("http://ci.local/api/").create_run("git@example.com:org/repo.git", "main", requests)

    assert result.run_id == "r-1"
    assert result.step_ids == ["a", "b", "c"]
    assert sent["url"] == "http://ci.local/api/runs"
    assert sent["method"] == "POST"
    assert sent["body"]["repo"] == "git@example.com:org/repo.git"
    assert sent["body"]["ref"] == "main"
    assert [s["label"] for s in sent["body"]["steps"]] == ["build-gnu-x86", "style", "unittests-gnu-arm"]
    assert sent["body"]["steps"][2]["payload_json"]["container"]["privileged"] is True


def test_http_error_becomes_api_error(monkeypatch, requests):
    def fake_urlopen(req, timeout=None):
        raise urllib.error.HTTPError(req.full_url, 500, "Server Error", {}, io.BytesIO(b"boom"))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(APIError) as e:
        APIClient("http://ci.local").create_run("repo", "main", requests)
    assert "500" in str(e.value)
    assert "boom" in str(e.value)


def test_network_error_becomes_api_error(monkeypatch, requests):
    def fake_urlopen(req, timeout=None):
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(APIError) as e:
        APIClient("http://ci.local").create_run("repo", "main", requests)
    assert "Network error" in str(e.value)


def test_unexpected_response_shape(monkeypatch, requests):
    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout=None: FakeResponse('{"ok": true}'))

    with pytest.raises(APIError) as e:
        APIClient("http://ci.local").create_run("repo", "main", requests)
    assert "Unexpected response" in str(e.value)


def test_read_timeout_becomes_api_error(monkeypatch, requests):
    class SlowResponse(FakeResponse):
        def read(self):
            raise TimeoutError("The read operation timed out")

    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout=None: SlowResponse(""))

    with pytest.raises(APIError) as e:
        APIClient("http://ci.local", timeout=2).create_run("repo", "main", requests)
    assert "timed out after 2s" in str(e.value)
