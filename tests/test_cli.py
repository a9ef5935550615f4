"""Tests for the administrator command line."""

import json

import pytest

from allthewebhooks.cli import build_parser, main, parse_assignments


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "webhooks.json"
    path.write_text(json.dumps({
        "targets": {
            "discord": {
                "url": "https://discord.example.com/api/webhooks/1",
                "eventKinds": ["player.chat", "player.jion"],
                "format": "discord",
                "template": "{player.name}: {chat.message}",
            },
        },
    }), encoding="utf-8")
    return path


class TestParseAssignments:
    """Tests for key=value parsing."""

    def test_pairs(self):
        """Test values may contain '='."""
        assert parse_assignments(["player.name=Alice", "chat.message=a=b"]) == {
            "player.name": "Alice",
            "chat.message": "a=b",
        }

    def test_missing_separator(self):
        """Test arguments without '=' are rejected."""
        with pytest.raises(ValueError):
            parse_assignments(["player.name"])


class TestValidateCommand:
    """Tests for the validate subcommand."""

    def test_valid_file_with_warnings(self, config_path, capsys):
        """Test a valid file reports its targets and warnings."""
        assert main(["validate", "--config", str(config_path)]) == 0

        out = capsys.readouterr().out
        assert "1 target(s)" in out
        assert "player.jion" in out

    def test_invalid_file(self, tmp_path, capsys):
        """Test an invalid file exits non-zero and lists issues."""
        path = tmp_path / "bad.json"
        path.write_text('{"targets": {"x": {"url": "nope"}}}', encoding="utf-8")

        assert main(["validate", "--config", str(path)]) == 1

        out = capsys.readouterr().out
        assert "targets.x.url" in out


class TestFireCommand:
    """Tests for the fire subcommand."""

    def test_dry_run(self, config_path, capsys):
        """Test a dry run prints the rendered payload."""
        code = main([
            "fire", "player.chat", "player.name=Alice", "chat.message=hi",
            "--config", str(config_path), "--dry-run",
        ])

        assert code == 0
        out = capsys.readouterr().out
        assert "Event player.chat (dry run)" in out
        assert "target discord (matched player.chat)" in out
        assert '{"content":"Alice: hi"}' in out

    def test_no_targets(self, config_path, capsys):
        """Test firing a kind nobody subscribes to."""
        assert main(["fire", "player.quit", "--config", str(config_path), "--dry-run"]) == 0

        assert "no targets subscribed" in capsys.readouterr().out

    def test_bad_attribute(self, config_path):
        """Test malformed attributes exit with a usage error."""
        assert main(["fire", "player.chat", "oops", "--config", str(config_path)]) == 2

    def test_subcommand_required(self):
        """Test the parser insists on a subcommand."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestDocsCommand:
    """Tests for the docs subcommand."""

    def test_writes_event_reference(self, config_path, tmp_path, capsys):
        """Test the reference lists registered kinds and their targets."""
        output = tmp_path / "docs" / "events.json"

        assert main(["docs", "--config", str(config_path), "--output", str(output)]) == 0

        listing = json.loads(output.read_text(encoding="utf-8"))
        by_kind = {entry["kind"]: entry for entry in listing}
        assert "player.join" in by_kind
        assert by_kind["player.chat"]["targets"] == ["discord"]
        assert "Wrote" in capsys.readouterr().out

    def test_stdout(self, config_path, capsys):
        """Test the reference goes to stdout without --output."""
        assert main(["docs", "--config", str(config_path)]) == 0

        listing = json.loads(capsys.readouterr().out)
        assert any(entry["kind"] == "player.quit" for entry in listing)
