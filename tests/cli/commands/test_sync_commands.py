"""Tests for the pull, push and clear commands."""

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from cx_tools.cli.app import app

runner = CliRunner()

pytestmark = pytest.mark.integration


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def _invoke(remote, args: list[str], input: str | None = None):
    with patch("cx_tools.cli.commands.sync.create_client", return_value=remote.client()):
        return runner.invoke(app, args, input=input)


class TestPull:
    """Tests for cx pull."""

    def test_pull_yes_writes_everything(self, workspace: Path, remote) -> None:
        """Test an unattended pull of files, env vars and config."""
        remote.add("scriptforge", "main", "run();\n")
        remote.add("setup/query", "report", "select 1;")
        remote.add_env("API_KEY", "secret")
        remote.add_domain("example.com")

        result = _invoke(remote, ["pull", "--yes"])

        assert result.exit_code == 0, result.output
        assert (workspace / "src" / "main.js").read_text() == "run();\n"
        assert (workspace / "query" / "report.sql").read_text() == "select 1;"
        assert "API_KEY=secret" in (workspace / "cx.env").read_text()
        assert 'domain = "example.com"' in (workspace / "cx.toml").read_text()
        assert "Successfully pulled 2/2" in result.output

    def test_pull_with_nothing_remote(self, workspace: Path, remote) -> None:
        """Test the empty-remote message."""
        result = _invoke(remote, ["pull", "--yes"])

        assert result.exit_code == 0
        assert "No items found to pull" in result.output

    def test_interactive_cancel_keeps_local_edits(self, workspace: Path, remote) -> None:
        """Test keep, skip diffs, then decline the final confirmation."""
        remote.add("scriptforge", "main", "remote")
        _write(workspace / "src" / "main.js", "local")

        result = _invoke(remote, ["pull"], input="keep\nskip\nn\n")

        assert result.exit_code == 0, result.output
        assert "Existing files detected" in result.output
        assert "will be overwritten" in result.output
        assert "Pull cancelled" in result.output
        assert (workspace / "src" / "main.js").read_text() == "local"

    def test_interactive_clean_then_pull(self, workspace: Path, remote) -> None:
        """Test that cleaning first removes files the remote no longer has."""
        remote.add("scriptforge", "main", "remote")
        _write(workspace / "src" / "stale.js", "old")

        result = _invoke(remote, ["pull"], input="clean\ny\n")

        assert result.exit_code == 0, result.output
        assert not (workspace / "src" / "stale.js").exists()
        assert (workspace / "src" / "main.js").read_text() == "remote"

    def test_silent_pull_prints_nothing(self, workspace: Path, remote) -> None:
        """Test that silent mode neither prompts nor decorates."""
        remote.add("scriptforge", "main", "remote")
        _write(workspace / "src" / "main.js", "local")

        result = _invoke(remote, ["pull", "--silent"])

        assert result.exit_code == 0
        assert result.output == ""
        assert (workspace / "src" / "main.js").read_text() == "remote"

    def test_fetch_failure_exits_non_zero(self, workspace: Path, remote) -> None:
        """Test that a partial pull still writes the rest but fails the command."""
        remote.add("scriptforge", "good", "ok")
        broken = remote.add("scriptforge", "broken", "x")
        remote.failing_ids.add(broken["id"])

        result = _invoke(remote, ["pull", "--yes"])

        assert result.exit_code == 1
        assert "Failed to fetch broken" in result.output
        assert (workspace / "src" / "good.js").exists()

    def test_unscoped_pull_warns_and_pulls_every_app(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, remote, make_token
    ) -> None:
        """Test that a pull without APP_ID warns and keeps records from all apps."""
        (tmp_path / ".env").write_text(f'CX_REFRESH_TOKEN="{make_token(30)}"\n')
        monkeypatch.chdir(tmp_path)
        remote.add("scriptforge", "first", "1", app_id="7")
        remote.add("scriptforge", "second", "2", app_id="8")

        result = _invoke(remote, ["pull", "--yes"])

        assert result.exit_code == 0, result.output
        assert "No APP_ID configured" in result.output
        assert (tmp_path / "src" / "first.js").read_text() == "1"
        assert (tmp_path / "src" / "second.js").read_text() == "2"

    def test_missing_token(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, remote) -> None:
        """Test that an unconfigured workspace tells the operator what to run."""
        monkeypatch.chdir(tmp_path)

        result = _invoke(remote, ["pull", "--yes"])

        assert result.exit_code == 1
        assert "No refresh token found" in result.output

    def test_expired_token(self, workspace: Path, remote) -> None:
        """Test that a rejected token aborts with the reconfigure hint."""
        remote.access_status = 401

        result = _invoke(remote, ["pull", "--yes"])

        assert result.exit_code == 1
        assert "cx configure" in result.output


class TestPush:
    """Tests for cx push."""

    def test_push_up_to_date(self, workspace: Path, remote) -> None:
        """Test that identical trees report nothing to push."""
        remote.add("scriptforge", "main", "same")
        _write(workspace / "src" / "main.js", "same")

        result = _invoke(remote, ["push", "--yes"])

        assert result.exit_code == 0, result.output
        assert "Everything is up to date" in result.output
        assert remote.writes == []

    def test_push_yes_creates_and_updates(self, workspace: Path, remote) -> None:
        """Test an unattended push of a new and a changed file."""
        existing = remote.add("scriptforge", "main", "old")
        _write(workspace / "src" / "main.js", "new")
        _write(workspace / "query" / "report.sql", "select 2;")

        result = _invoke(remote, ["push", "--yes"])

        assert result.exit_code == 0, result.output
        assert [(r.method, r.url.path) for r in remote.writes] == [
            ("PUT", f"/scriptforge/{existing['id']}"),
            ("POST", "/setup/query"),
        ]
        assert "2 succeeded, 0 failed" in result.output

    def test_push_decline(self, workspace: Path, remote) -> None:
        """Test that declining the confirmation makes no writes."""
        _write(workspace / "src" / "added.js", "x")

        result = _invoke(remote, ["push"], input="n\n")

        assert result.exit_code == 0, result.output
        assert "Push cancelled" in result.output
        assert remote.writes == []

    def test_partial_failure_exits_non_zero(self, workspace: Path, remote) -> None:
        """Test that one rejected write fails the command after the rest succeed."""
        remote.failing_writes.add("bad")
        _write(workspace / "src" / "bad.js", "1")
        _write(workspace / "src" / "good.js", "2")

        result = _invoke(remote, ["push", "--yes"])

        assert result.exit_code == 1
        assert "Failed to create bad.js: Write rejected" in result.output
        assert "1 succeeded, 1 failed" in result.output


class TestClear:
    """Tests for cx clear."""

    def test_clear_yes(self, workspace: Path, remote) -> None:
        """Test deleting every sync file without prompting."""
        _write(workspace / "src" / "a.js", "a")
        _write(workspace / "template" / "t.html", "t")

        result = _invoke(remote, ["clear", "--yes"])

        assert result.exit_code == 0, result.output
        assert "Successfully deleted 2/2" in result.output
        assert not (workspace / "src" / "a.js").exists()
        assert (workspace / ".env").exists()
        assert remote.requests == []

    def test_clear_silent_declines(self, workspace: Path, remote) -> None:
        """Test that silent mode without --yes keeps the files."""
        _write(workspace / "src" / "a.js", "a")

        result = _invoke(remote, ["clear", "--silent"])

        assert result.exit_code == 0
        assert (workspace / "src" / "a.js").exists()

    def test_clear_nothing(self, workspace: Path, remote) -> None:
        """Test the empty-tree message."""
        result = _invoke(remote, ["clear"])

        assert result.exit_code == 0
        assert "No files found" in result.output
