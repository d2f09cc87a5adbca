"""
Tests for the command-line entry point in postercache/main.py.

Test Perspectives Table:
| Case ID   | Input / Precondition              | Perspective           | Expected Result                      | Notes |
|-----------|-----------------------------------|-----------------------|--------------------------------------|-------|
| TC-N-01   | init                              | Equivalence - normal  | Schema created, exit 0               | -     |
| TC-N-02   | run_lookup() success              | Equivalence - normal  | URL printed, exit 0                  | -     |
| TC-A-01   | run_lookup() backend failure      | Boundary - failure    | Error printed, exit 1                | -     |
| TC-A-02   | lookup without --key              | Boundary - usage      | Exit 2                               | -     |
"""

import sys
from unittest.mock import patch

import pytest

from postercache import main as cli
from postercache.crawler.poster_fetcher import PosterNotFoundError
from postercache.storage.database import Database


class TestMain:
    """Tests for main()."""

    def test_init_creates_schema(
        self, make_settings, temp_db_path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """TC-N-01: init prepares the durable store."""
        monkeypatch.setattr(sys, "argv", ["postercache", "init"])

        with (
            patch.object(cli, "get_settings", return_value=make_settings()),
            patch.object(cli, "initialize"),
        ):
            code = cli.main()

        assert code == 0
        assert temp_db_path.exists()

    def test_lookup_requires_key(
        self, make_settings, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """TC-A-02: lookup without --key is a usage error."""
        monkeypatch.setattr(sys, "argv", ["postercache", "lookup"])

        with (
            patch.object(cli, "get_settings", return_value=make_settings()),
            patch.object(cli, "initialize"),
        ):
            code = cli.main()

        assert code == 2
        assert "--key is required" in capsys.readouterr().out


@pytest.mark.integration
class TestRunLookup:
    """Tests for the one-shot lookup command."""

    @pytest.mark.asyncio
    async def test_lookup_prints_url(
        self, make_settings, fake_fetcher, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """TC-N-02: A successful lookup prints the URL."""
        with patch.object(cli, "PlaywrightPosterFetcher", return_value=fake_fetcher):
            code = await cli.run_lookup(make_settings(), "Heat")

        assert code == 0
        assert capsys.readouterr().out == "https://posters.example/Heat.jpg\n"
        assert fake_fetcher.closed

    @pytest.mark.asyncio
    async def test_lookup_failure_exit_code(
        self, make_settings, fake_fetcher, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """TC-A-01: A failed fetch exits non-zero."""
        fake_fetcher.failures["Obscure"] = PosterNotFoundError("no image")

        with patch.object(cli, "PlaywrightPosterFetcher", return_value=fake_fetcher):
            code = await cli.run_lookup(make_settings(), "Obscure")

        assert code == 1
        assert "not_found" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_init_database_idempotent(self, make_settings, temp_db_path) -> None:
        settings = make_settings()

        await cli.init_database(settings)
        await cli.init_database(settings)

        db = Database(temp_db_path)
        await db.connect()
        try:
            row = await db.fetch_one("SELECT COUNT(*) AS n FROM posters")
        finally:
            await db.close()
        assert row == {"n": 0}
