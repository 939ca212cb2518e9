"""Tests for the CLI entry point."""

from __future__ import annotations

import io
import json

import pytest

import persona_memory.cli as cli_module
from persona_memory.cli import main
from persona_memory.errors import ExactStoreError


@pytest.fixture()
def patched_services(services, monkeypatch):
    """
    Make the CLI use in-memory services instead of touching the
    filesystem or loading a model.
    """
    monkeypatch.setattr(cli_module, "build_services", lambda config: services)
    return services


class TestCLI:
    def test_classify_needs_no_backends(self, capsys):
        rc = main(["classify", "What is Beskar?"])
        assert rc == 0
        assert json.loads(capsys.readouterr().out) == {
            "intent": "question",
            "topic": "starwars",
            "tone": "neutral",
        }

    def test_lookup_empty(self, patched_services, capsys):
        rc = main(["lookup", "What is Beskar?"])
        assert rc == 0
        assert "No memory found" in capsys.readouterr().out

    def test_admit_and_lookup(self, patched_services, capsys):
        rc = main(["admit", "What is Beskar?", "Beskar is Mandalorian steel."])
        assert rc == 0
        assert "stored" in capsys.readouterr().out

        rc = main(["lookup", "beskar, what is it"])
        assert rc == 0
        assert capsys.readouterr().out.strip() == "Beskar is Mandalorian steel."

    def test_admit_reads_stdin(self, patched_services, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("Mandalorian steel.\n"))
        assert main(["admit", "What is Beskar?"]) == 0
        capsys.readouterr()
        main(["lookup", "what is beskar?"])
        assert capsys.readouterr().out.strip() == "Mandalorian steel."

    def test_admit_missing_response_returns_error(self, patched_services, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        assert main(["admit", "What is Beskar?"]) == 1

    def test_lookup_json_output(self, patched_services, capsys):
        main(["admit", "What is Beskar?", "Steel.", "--summary", "beskar"])
        capsys.readouterr()
        main(["lookup", "--json", "What is Beskar?"])
        result = json.loads(capsys.readouterr().out)
        assert result["response"] == "Steel."
        assert result["summary"] == "beskar"
        assert result["context"]["topic"] == "starwars"

    def test_record_and_emitted(self, patched_services, capsys):
        main(["emitted", "This is the Way."])
        assert capsys.readouterr().out.strip() == "no"
        main(["record", "This is the Way."])
        assert capsys.readouterr().out.strip() == "recorded"
        main(["record", "this is the way. "])
        assert capsys.readouterr().out.strip() == "already_emitted"
        main(["emitted", "THIS IS THE WAY."])
        assert capsys.readouterr().out.strip() == "yes"

    def test_recent(self, patched_services, capsys):
        main(["recent"])
        assert "Nothing published" in capsys.readouterr().out
        main(["record", "first post"])
        main(["record", "second post"])
        capsys.readouterr()
        main(["recent", "-n", "1"])
        assert capsys.readouterr().out.strip() == "second post"

    def test_history_empty(self, patched_services, capsys):
        assert main(["--actor", "mando", "history"]) == 0
        assert "No history" in capsys.readouterr().out

    def test_admit_appends_to_history(self, patched_services, capsys):
        main(["--actor", "mando", "admit", "What is Beskar?", "Mandalorian steel."])
        capsys.readouterr()
        assert main(["--actor", "mando", "history"]) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("user: What is Beskar?")
        assert lines[1].endswith("assistant: Mandalorian steel.")

    def test_backend_error_returns_one(self, patched_services, capsys, monkeypatch):
        async def broken(actor_id, raw_query):
            raise ExactStoreError("exact store down")

        monkeypatch.setattr(patched_services.cache, "lookup", broken)
        assert main(["lookup", "What is Beskar?"]) == 1
        assert "exact store down" in capsys.readouterr().err
