"""Tests for the command-line interface.

The analysis pipeline itself is patched out; these tests cover argument
handling, output and exit codes.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from profilestream import __version__
from profilestream.cli import cli
from profilestream.controller import StreamingState
from profilestream.models import (
    EarlyWarnings,
    MatchIdentity,
    MatchProfile,
    MatchPsychology,
    ProfileKind,
    SelfProfile,
    StreamingPhase,
)
from profilestream.store import JsonRecordStore

VALID_KEY = "AIzaSyTestKey1234567890"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def video(tmp_path: Path) -> Path:
    path = tmp_path / "recording.mp4"
    path.write_bytes(b"fake video")
    return path


def finished(phase: StreamingPhase = StreamingPhase.COMPLETE, error: str | None = None) -> StreamingState:
    profile = MatchProfile(
        identity=MatchIdentity(name="Sam", age=29, app="Hinge"),
        psychological=MatchPsychology(emerging_archetype="Driven adventurer", confidence_level=70),
        early_warnings=EarlyWarnings(green_flags=["Kind to friends"]),
    )
    return StreamingState(phase=phase, profile=profile, error=error)


def patched_pipeline(state: StreamingState):
    """Patch key lookup, the Gemini client and the analysis run."""
    run = AsyncMock(return_value=state)
    patches = [
        patch("profilestream.cli.get_api_key", return_value=VALID_KEY),
        patch("profilestream.cli.AIClient", MagicMock()),
        patch("profilestream.cli._run_analysis", run),
    ]
    return patches, run


class TestBasics:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert f"profilestream, version {__version__}" in result.output

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("analyze", "list", "config"):
            assert command in result.output


# =============================================================================
# Analyze
# =============================================================================


class TestAnalyze:
    def test_missing_key_exits(self, runner: CliRunner, video: Path, isolated_dirs: Path) -> None:
        result = runner.invoke(cli, ["analyze", str(video)])

        assert result.exit_code == 1
        assert "config set-key" in result.output

    def test_missing_video_is_a_usage_error(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["analyze", str(tmp_path / "absent.mp4")])

        assert result.exit_code == 2

    def test_match_summary(self, runner: CliRunner, video: Path, isolated_dirs: Path) -> None:
        patches, run = patched_pipeline(finished())
        with patches[0], patches[1], patches[2]:
            result = runner.invoke(cli, ["analyze", str(video), "--data-dir", str(isolated_dirs / "store")])

        assert result.exit_code == 0, result.output
        assert "Sam, 29" in result.output
        assert "Driven adventurer" in result.output
        assert "Kind to friends" in result.output

        kind, video_arg, store, _, _ = run.await_args.args
        assert kind == ProfileKind.MATCH
        assert video_arg == video
        assert store.directory == isolated_dirs / "store" / "matches"

    def test_self_kind_uses_identity_store(self, runner: CliRunner, video: Path, isolated_dirs: Path) -> None:
        state = StreamingState(phase=StreamingPhase.COMPLETE, profile=SelfProfile())
        patches, run = patched_pipeline(state)
        with patches[0], patches[1], patches[2]:
            result = runner.invoke(
                cli, ["analyze", str(video), "--kind", "self", "--data-dir", str(isolated_dirs)]
            )

        assert result.exit_code == 0, result.output
        assert "Your profile" in result.output
        assert run.await_args.args[2].directory == isolated_dirs / "identity"

    def test_json_output(self, runner: CliRunner, video: Path, isolated_dirs: Path) -> None:
        patches, _ = patched_pipeline(finished())
        with patches[0], patches[1], patches[2]:
            result = runner.invoke(cli, ["analyze", str(video), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["identity"]["name"] == "Sam"
        assert data["psychological"]["confidence_level"] == 70

    def test_failed_run_exits_with_message(self, runner: CliRunner, video: Path, isolated_dirs: Path) -> None:
        patches, _ = patched_pipeline(
            finished(StreamingPhase.ERROR, error="We couldn't open that video. Please try a different file.")
        )
        with patches[0], patches[1], patches[2]:
            result = runner.invoke(cli, ["analyze", str(video)])

        assert result.exit_code == 1
        assert "We couldn't open that video" in result.output

    def test_unfinished_run_exits(self, runner: CliRunner, video: Path, isolated_dirs: Path) -> None:
        patches, _ = patched_pipeline(finished(StreamingPhase.EXTRACTING))
        with patches[0], patches[1], patches[2]:
            result = runner.invoke(cli, ["analyze", str(video)])

        assert result.exit_code == 1
        assert "extracting" in result.output


# =============================================================================
# List
# =============================================================================


class TestList:
    def test_empty(self, runner: CliRunner, tmp_path: Path, isolated_dirs: Path) -> None:
        result = runner.invoke(cli, ["list", "--data-dir", str(tmp_path / "empty")])

        assert result.exit_code == 0
        assert "No analyses stored yet." in result.output

    def test_shows_stored_records(self, runner: CliRunner, tmp_path: Path, isolated_dirs: Path) -> None:
        store = JsonRecordStore(tmp_path / "matches")
        record = {"name": "Sam", "age": 29, "app_name": "Hinge", "timestamp": "2024-05-01T12:00:00+00:00"}
        asyncio.run(store.create(record))

        result = runner.invoke(cli, ["list", "--data-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "Sam" in result.output
        assert "Hinge" in result.output
        assert "2024-05-01T12:00:00" in result.output


# =============================================================================
# Config
# =============================================================================


class TestConfigCommands:
    def test_set_key_encrypted_file(self, runner: CliRunner, isolated_dirs: Path) -> None:
        result = runner.invoke(
            cli, ["config", "set-key", "--backend", "encrypted_file", "--key", VALID_KEY]
        )

        assert result.exit_code == 0, result.output
        assert "API key stored using the encrypted_file backend" in result.output
        config_dir = isolated_dirs / "config" / "profilestream"
        assert (config_dir / "config.yaml").exists()
        assert (config_dir / "credentials.enc").exists()

    def test_set_key_prompts(self, runner: CliRunner, isolated_dirs: Path) -> None:
        result = runner.invoke(cli, ["config", "set-key", "--backend", "env"], input=f"{VALID_KEY}\n")

        assert result.exit_code == 0, result.output
        assert VALID_KEY not in result.output

    def test_set_key_rejects_short_key(self, runner: CliRunner, isolated_dirs: Path) -> None:
        result = runner.invoke(cli, ["config", "set-key", "--backend", "env", "--key", "short"])

        assert result.exit_code == 1
        assert "too short" in result.output

    def test_show(self, runner: CliRunner, isolated_dirs: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        missing = runner.invoke(cli, ["config", "show"])
        monkeypatch.setenv("GEMINI_API_KEY", VALID_KEY)
        configured = runner.invoke(cli, ["config", "show"])

        assert missing.exit_code == 0
        assert "gemini-2.0-flash" in missing.output
        assert "missing" in missing.output
        assert "configured" in configured.output
