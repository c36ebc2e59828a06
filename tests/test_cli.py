import json

import pytest

import cli


class FakeResponse:
    def __init__(self, payload, ok=True):
        self._payload = payload
        self.ok = ok

    def json(self):
        return self._payload


@pytest.fixture
def http(monkeypatch):
    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append(("GET", url, params))
        return FakeResponse([])

    def fake_post(url, timeout=None):
        calls.append(("POST", url, None))
        return FakeResponse({"queued": url}, ok=not url.endswith("/bad/reconcile"))

    monkeypatch.setattr(cli.requests, "get", fake_get)
    monkeypatch.setattr(cli.requests, "post", fake_post)
    return calls


def test_channels(http, capsys):
    assert cli.main(["--api", "http://kcr:8000/", "channels"]) == 0

    assert http == [("GET", "http://kcr:8000/channels", None)]
    assert json.loads(capsys.readouterr().out) == []


def test_events_with_subject(http):
    cli.main(["events", "--limit", "5", "--subject", "ns1/chan-a"])

    assert http == [("GET", "http://localhost:8000/events", {"limit": 5, "subject": "ns1/chan-a"})]


def test_reconcile_and_propagate(http):
    assert cli.main(["reconcile", "--namespace", "ns1", "--name", "chan-a"]) == 0
    assert cli.main(["propagate", "--secret", "kafka-secret"]) == 0

    assert [url for _, url, _ in http] == [
        "http://localhost:8000/channels/ns1/chan-a/reconcile",
        "http://localhost:8000/secrets/kafka-secret/propagate",
    ]


def test_failed_request_exits_non_zero(http):
    assert cli.main(["reconcile", "--namespace", "ns1", "--name", "bad"]) == 1
