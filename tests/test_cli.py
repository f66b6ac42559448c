import json

from loadtester.cli import app
from typer.testing import CliRunner

runner = CliRunner()


def test_loopback_run_writes_report(tmp_path):
    output = tmp_path / "report.json"
    result = runner.invoke(
        app,
        [
            "load-test",
            "--platform",
            "loopback",
            "--publishers",
            "1",
            "--subscribers",
            "1",
            "--duration",
            "500ms",
            "--num-per-second",
            "10",
            "--api-secret",
            "topsecret",
            "--output",
            str(output),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Subscriber summaries:" in result.output
    report = json.loads(output.read_text())
    assert report["params"]["video_publishers"] == 1
    assert report["testers"][0]["name"] == "Sub 0"
    assert "api_secret" not in report["params"]


def test_cloud_cap_exits_with_error():
    result = runner.invoke(
        app,
        [
            "load-test",
            "--platform",
            "loopback",
            "--url",
            "https://x.livekit.cloud",
            "--publishers",
            "51",
        ],
    )

    assert result.exit_code == 1
    assert "Unable to perform load test" in result.output


def test_invalid_duration():
    result = runner.invoke(app, ["load-test", "--platform", "loopback", "--duration", "soon"])

    assert result.exit_code == 1
    assert "Invalid arguments" in result.output


def test_unknown_platform():
    result = runner.invoke(app, ["load-test", "--platform", "carrier-pigeon"])

    assert result.exit_code == 1
    assert "Unknown platform" in result.output
