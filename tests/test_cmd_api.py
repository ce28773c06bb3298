"""CLI tests for api command group."""
import json
from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from kubeconn.commands.api_cmd import app
from kubeconn.config import get_settings
from kubeconn.exceptions import ConfigError, NotFoundError, WatchRetriesExhaustedError
from kubeconn.models.watch import WatchEvent

runner = CliRunner()

POD_LIST = {
    "kind": "PodList",
    "items": [
        {"kind": "Pod", "metadata": {"name": "web-0", "namespace": "default", "resourceVersion": "5"}},
        {"kind": "Pod", "metadata": {"name": "web-1", "namespace": "default", "resourceVersion": "6"}},
    ],
}


def _mock_client(data=None):
    client = MagicMock()
    client.get.return_value.json.return_value = data if data is not None else POD_LIST
    return client


def _json_lines(output):
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


# ── get ──────────────────────────────────────────────────────────────

def test_get_json():
    client = _mock_client()
    with patch("kubeconn.commands.api_cmd.KubeClient") as kube:
        kube.auto.return_value = client
        result = runner.invoke(app, ["get", "/api/v1/pods"])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == POD_LIST
    client.get.assert_called_once_with("/api/v1/pods", None)
    client.close.assert_called_once()


def test_get_with_selector():
    client = _mock_client()
    with patch("kubeconn.commands.api_cmd.KubeClient") as kube:
        kube.auto.return_value = client
        runner.invoke(app, ["get", "/api/v1/pods", "-l", "app=web"])

    client.get.assert_called_once_with("/api/v1/pods", {"labelSelector": "app=web"})


def test_get_with_kubeconfig_uses_from_config():
    client = _mock_client()
    with patch("kubeconn.commands.api_cmd.KubeClient") as kube:
        kube.from_config.return_value = client
        result = runner.invoke(app, ["get", "/version", "--kubeconfig", "/tmp/kc", "--context", "ops"])

    assert result.exit_code == 0
    kube.from_config.assert_called_once_with("/tmp/kc", context="ops")
    kube.auto.assert_not_called()


def test_get_table_lists_items():
    client = _mock_client()
    with patch("kubeconn.commands.api_cmd.KubeClient") as kube:
        kube.auto.return_value = client
        result = runner.invoke(app, ["get", "/api/v1/pods", "-o", "table"])

    assert result.exit_code == 0
    assert "web-0" in result.output
    assert "web-1" in result.output


def test_get_not_found():
    client = _mock_client()
    client.get.side_effect = NotFoundError("Not found (/api/v1/pods/x)", path="/api/v1/pods/x", status_code=404)
    with patch("kubeconn.commands.api_cmd.KubeClient") as kube:
        kube.auto.return_value = client
        result = runner.invoke(app, ["get", "/api/v1/pods/x"])

    assert result.exit_code == 1
    assert "NOT_FOUND" in result.output
    client.close.assert_called_once()


def test_get_without_config():
    with patch("kubeconn.commands.api_cmd.KubeClient") as kube:
        kube.auto.side_effect = ConfigError("Cannot detect Kubernetes config")
        result = runner.invoke(app, ["get", "/version"])

    assert result.exit_code == 1
    assert "CONFIG_ERROR" in result.output


# ── watch ────────────────────────────────────────────────────────────

def _events(count):
    return [
        WatchEvent.model_validate({
            "type": "ADDED",
            "object": {"kind": "Pod", "metadata": {"name": f"web-{i}", "resourceVersion": str(10 + i)}},
        })
        for i in range(count)
    ]


def _fake_run(events):
    def run(callback):
        for event in events:
            if callback(event) is False:
                return
    return run


def test_watch_prints_json_lines():
    with patch("kubeconn.commands.api_cmd.KubeClient") as kube, \
         patch("kubeconn.commands.api_cmd.WatchStream") as stream_cls:
        client = kube.auto.return_value
        stream_cls.return_value.run.side_effect = _fake_run(_events(3))
        result = runner.invoke(app, ["watch", "/api/v1/pods", "--resource-version", "7", "--max-retries", "3"])

    assert result.exit_code == 0
    lines = _json_lines(result.output)
    assert [line["name"] for line in lines] == ["web-0", "web-1", "web-2"]
    assert lines[0]["type"] == "ADDED"
    stream_cls.assert_called_once_with(
        client, "/api/v1/pods", resource_version="7", timeout_seconds=600, max_retries=3
    )
    client.close.assert_called_once()


def test_watch_max_events():
    with patch("kubeconn.commands.api_cmd.KubeClient"), \
         patch("kubeconn.commands.api_cmd.WatchStream") as stream_cls:
        stream_cls.return_value.run.side_effect = _fake_run(_events(5))
        result = runner.invoke(app, ["watch", "/api/v1/pods", "--max-events", "2"])

    assert result.exit_code == 0
    assert len(_json_lines(result.output)) == 2


def test_watch_interrupted():
    with patch("kubeconn.commands.api_cmd.KubeClient") as kube, \
         patch("kubeconn.commands.api_cmd.WatchStream") as stream_cls:
        stream_cls.return_value.run.side_effect = KeyboardInterrupt
        result = runner.invoke(app, ["watch", "/api/v1/pods"])

    assert result.exit_code == 0
    stream_cls.return_value.stop.assert_called_once()
    kube.auto.return_value.close.assert_called_once()


def test_watch_gives_up():
    with patch("kubeconn.commands.api_cmd.KubeClient"), \
         patch("kubeconn.commands.api_cmd.WatchStream") as stream_cls:
        stream_cls.return_value.run.side_effect = WatchRetriesExhaustedError("Watch max retries (3) exceeded")
        result = runner.invoke(app, ["watch", "/api/v1/pods"])

    assert result.exit_code == 1
    assert "WATCH_FAILED" in result.output


def test_watch_timeout_from_settings(monkeypatch):
    monkeypatch.setenv("KUBECONN_WATCH_TIMEOUT", "90")
    get_settings.cache_clear()
    with patch("kubeconn.commands.api_cmd.KubeClient"), \
         patch("kubeconn.commands.api_cmd.WatchStream") as stream_cls:
        stream_cls.return_value.run.side_effect = _fake_run([])
        runner.invoke(app, ["watch", "/api/v1/pods"])

    assert stream_cls.call_args.kwargs["timeout_seconds"] == 90


def test_watch_timeout_option_overrides_settings():
    with patch("kubeconn.commands.api_cmd.KubeClient"), \
         patch("kubeconn.commands.api_cmd.WatchStream") as stream_cls:
        stream_cls.return_value.run.side_effect = _fake_run([])
        runner.invoke(app, ["watch", "/api/v1/pods", "--timeout", "30"])

    assert stream_cls.call_args.kwargs["timeout_seconds"] == 30
