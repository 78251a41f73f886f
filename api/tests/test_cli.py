"""Tests for the management CLI.

Commands run against a throwaway SQLite file so asyncio.run() gets a fresh
engine per command, the way it does in production.
"""

from pathlib import Path

import pytest

from cli import build_parser, main
from core.config import clear_settings_cache


@pytest.fixture
def sqlite_file(tmp_path: Path, monkeypatch) -> Path:
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "public"))
    clear_settings_cache()
    return db_path


@pytest.mark.unit
class TestParser:
    def test_add_recipient_arguments(self):
        args = build_parser().parse_args(
            ["add-recipient", "Ada Lovelace", "ada@example.com", "--event", "Launch"]
        )

        assert args.command == "add-recipient"
        assert args.name == "Ada Lovelace"
        assert args.email == "ada@example.com"
        assert args.event == "Launch"

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "Available commands" in capsys.readouterr().out

    def test_invalid_email_is_rejected_before_database(self):
        assert main(["add-recipient", "Ada", "not-an-email"]) == 1


@pytest.mark.integration
class TestCommands:
    def test_create_tables_add_recipient_and_stats(self, sqlite_file, tmp_path, capsys):
        assert main(["create-tables"]) == 0
        assert sqlite_file.exists()
        assert (tmp_path / "public" / "certificates").is_dir()

        assert main(["add-recipient", "Ada Lovelace", "Ada@Example.com"]) == 0
        assert main(["add-recipient", "Ada Again", "ada@example.com"]) == 1

        assert main(["stats"]) == 0
        out = capsys.readouterr().out
        assert "templates:    0" in out
        assert "certificates: 0" in out
