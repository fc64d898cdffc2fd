"""Tests for CLI module."""

import json
from io import StringIO
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from manaflood.card_query import QueryError
from manaflood.card_store import CardStore
from manaflood.catalog import DomainCatalog
from manaflood.cli import (
    build_query,
    create_parser,
    download_data,
    format_size,
    import_data,
    main,
    parse_comparison,
    print_progress_bar,
    show_status,
)


class TestFormatSize:
    """Byte counts rendered with binary units."""

    @pytest.mark.parametrize(
        "size, expected",
        [
            (0, "0.0 B"),
            (500, "500.0 B"),
            (1536, "1.5 KB"),
            (5 * 1024**2, "5.0 MB"),
            (2.5 * 1024**3, "2.5 GB"),
            (1024**4, "1.0 TB"),
        ],
    )
    def test_units(self, size: float, expected: str):
        """Each magnitude gets its unit and one decimal."""
        assert format_size(size) == expected


class TestPrintProgressBar:
    """The download progress line."""

    def test_half_done(self):
        """Half the bar is filled and both sizes are shown."""
        with patch("sys.stdout", new_callable=StringIO) as fake_out:
            print_progress_bar(512, 1024, width=10)

        line = fake_out.getvalue()
        assert line.startswith("\r")
        assert "█████░░░░░" in line
        assert "50.0% (512.0 B / 1.0 KB)" in line

    def test_unknown_total(self):
        """Without a Content-Length nothing is drawn."""
        with patch("sys.stdout", new_callable=StringIO) as fake_out:
            print_progress_bar(100, 0)
        assert fake_out.getvalue() == ""


class TestParseComparison:
    """Test comparison expression parsing."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("power>3", ("power", ">", "3")),
            ("power >= toughness", ("power", ">=", "toughness")),
            ("{U}>=2", ("{U}", ">=", "2")),
            ("cmc!=0", ("cmc", "!=", "0")),
            ("loyalty=4", ("loyalty", "=", "4")),
        ],
    )
    def test_valid(self, expression, expected):
        """Left side, operator and right side are split apart."""
        assert parse_comparison(expression) == expected

    @pytest.mark.parametrize("expression", ["power", ">3", "power > 3 4", ""])
    def test_invalid(self, expression):
        """Malformed expressions raise QueryError."""
        with pytest.raises(QueryError):
            parse_comparison(expression)


class TestBuildQuery:
    """Test translating search flags into a CardQuery."""

    def _args(self, *argv: str):
        return create_parser().parse_args(["search", *argv])

    def test_modes_from_prefixes(self, catalog: DomainCatalog):
        """--X, --not-X and --any-X map to the three inclusion modes."""
        query = build_query(
            self._args("--color", "U", "--not-color", "B", "--any-type", "Creature", "--any-type", "Instant"),
            catalog,
        )
        expected = build_query(self._args(), catalog)
        expected.by_color("U", "must_include")
        expected.by_color("B", "disallow")
        expected.by_type("Creature", "one_of")
        expected.by_type("Instant", "one_of")

        assert query.as_query() == expected.as_query()

    def test_numeric_flags(self, catalog: DomainCatalog):
        """--stat, --stat-vs and --mana take comparison expressions."""
        query = build_query(
            self._args("--stat", "power>3", "--stat-vs", "power>=toughness", "--mana", "U>=2"),
            catalog,
        )
        sql = query.as_query()

        assert "power_value > 3" in sql
        assert "power_value >= " in sql
        assert "t5.mana_type = '{U}'" in sql
        assert "COALESCE(t5.quantity, 0) >= 2" in sql

    def test_non_integer_value(self, catalog: DomainCatalog):
        """Stat values must be integers."""
        with pytest.raises(QueryError):
            build_query(self._args("--stat", "power>lots"), catalog)

    def test_unknown_value(self, catalog: DomainCatalog):
        """Values outside the catalog are rejected."""
        with pytest.raises(QueryError):
            build_query(self._args("--rarity", "special"), catalog)


class TestSearchCommand:
    """Test the search subcommand end to end."""

    def test_search_prints_printings(self, tmp_path: Path, populated_store: CardStore, capsys):
        """Matching printings are listed with a total."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--data-dir", str(tmp_path), "search", "--name", "Fabled", "--type", "Creature"])

        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "Fabled Hero  [Theros #12, rare]" in out
        assert "1 of 1 printings shown." in out

    def test_show_sql(self, tmp_path: Path, populated_store: CardStore, capsys):
        """--show-sql prints the compiled statement first."""
        with pytest.raises(SystemExit):
            main(["--data-dir", str(tmp_path), "search", "--show-sql"])

        out = capsys.readouterr().out
        assert out.startswith("SELECT t0.card_name, t0.expansion, t0.number FROM CardExpansion t0\n")
        assert "13 of 13 printings shown." in out

    def test_pagination(self, tmp_path: Path, populated_store: CardStore, capsys):
        """--limit caps the listed printings but not the total."""
        with pytest.raises(SystemExit):
            main(["--data-dir", str(tmp_path), "search", "--limit", "2"])

        assert "2 of 13 printings shown." in capsys.readouterr().out

    @pytest.mark.parametrize(
        "flag, value", [("--limit", "-1"), ("--limit", "0"), ("--offset", "-5"), ("--limit", "ten")]
    )
    def test_out_of_range_paging(self, tmp_path: Path, flag: str, value: str, capsys):
        """Negative offsets and non-positive limits are usage errors."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--data-dir", str(tmp_path), "search", flag, value])

        assert exc_info.value.code == 2
        assert flag in capsys.readouterr().err

    def test_invalid_filter_exit_code(self, tmp_path: Path, populated_store: CardStore, capsys):
        """Invalid filters exit with status 2 and a hint on stderr."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--data-dir", str(tmp_path), "search", "--color", "P"])

        assert exc_info.value.code == 2
        err = capsys.readouterr().err
        assert "Unsupported color" in err
        assert "Hint:" in err


class TestShowStatus:
    """Test show_status command."""

    @pytest.mark.asyncio
    async def test_show_status_no_data(self, tmp_path: Path):
        """Should show status when no data exists."""
        with patch("builtins.print") as mock_print:
            await show_status(tmp_path)

        calls = [str(c) for c in mock_print.call_args_list]
        assert any("Status" in c for c in calls)
        assert any("Never" in c for c in calls)

    @pytest.mark.asyncio
    async def test_show_status_with_data(self, tmp_path: Path):
        """Should show the recorded printing count."""
        metadata = {
            "file": "AllPrintings.json",
            "downloaded_at": "2025-01-09T12:00:00+00:00",
            "version": "5.2.2+20250109",
            "printing_count": 50000,
        }
        with open(tmp_path / "metadata.json", "w") as f:
            json.dump(metadata, f)

        with patch("manaflood.cli.DataManager.is_cache_stale", AsyncMock(return_value=False)):
            with patch("builtins.print") as mock_print:
                await show_status(tmp_path)

        calls = [str(c) for c in mock_print.call_args_list]
        assert any("50,000" in c for c in calls)
        assert any("5.2.2+20250109" in c for c in calls)


class TestImportData:
    """Test import_data command."""

    @pytest.mark.asyncio
    async def test_import_data_no_file(self, tmp_path: Path):
        """Should handle an empty data directory."""
        with patch("builtins.print") as mock_print:
            await import_data(tmp_path)

        calls = [str(c) for c in mock_print.call_args_list]
        assert any("No JSON data file found" in c for c in calls)

    @pytest.mark.asyncio
    async def test_import_data_file_not_exists(self, tmp_path: Path):
        """Should handle a non-existent file."""
        with patch("builtins.print") as mock_print:
            await import_data(tmp_path, tmp_path / "nonexistent.json")

        calls = [str(c) for c in mock_print.call_args_list]
        assert any("File not found" in c for c in calls)

    @pytest.mark.asyncio
    async def test_import_all_printings(self, tmp_path: Path, sample_sets: list[dict[str, Any]]):
        """Should auto-detect and import an AllPrintings file."""
        with open(tmp_path / "AllPrintings.json", "w") as f:
            json.dump({"data": {s["code"].upper(): s for s in sample_sets}}, f)

        with patch("builtins.print"), patch("sys.stdout.write"):
            await import_data(tmp_path)

        with CardStore(tmp_path / "cards.db") as store:
            assert store.get_printing_count() == 13
        with open(tmp_path / "metadata.json") as f:
            assert json.load(f)["printing_count"] == 13

    @pytest.mark.asyncio
    async def test_import_single_set(self, tmp_path: Path, theros_set: dict[str, Any]):
        """--set imports a single set file."""
        json_file = tmp_path / "THS.json"
        with open(json_file, "w") as f:
            json.dump({"data": theros_set}, f)

        with patch("builtins.print"):
            await import_data(tmp_path, json_file, single_set=True)

        with CardStore(tmp_path / "cards.db") as store:
            assert store.get_printing_count() == 6


class TestDownloadData:
    """Test download_data command."""

    @pytest.mark.asyncio
    async def test_download_data_already_current(self, tmp_path: Path):
        """Should skip download when data is current."""
        with patch("manaflood.cli.DataManager") as MockDataManager:
            mock_manager = AsyncMock()
            mock_manager.is_cache_stale = AsyncMock(return_value=False)
            mock_manager.get_status = AsyncMock(return_value=MagicMock(
                last_updated="2025-01-09",
                printing_count=50000,
            ))
            MockDataManager.return_value = mock_manager

            with patch("builtins.print") as mock_print:
                await download_data(tmp_path)

        calls = [str(c) for c in mock_print.call_args_list]
        assert any("already up to date" in c for c in calls)
        mock_manager.download_file.assert_not_called()
        mock_manager.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_download_then_import(self, tmp_path: Path, theros_set: dict[str, Any]):
        """A set download is imported as a single set."""
        json_file = tmp_path / "THS.json"
        with open(json_file, "w") as f:
            json.dump({"data": theros_set}, f)

        with patch("manaflood.cli.DataManager") as MockDataManager:
            mock_manager = AsyncMock()
            mock_manager.download_file = AsyncMock(return_value=json_file)
            mock_manager.update_printing_count = MagicMock()
            MockDataManager.return_value = mock_manager

            with patch("builtins.print"):
                await download_data(tmp_path, "THS", force=True)

        mock_manager.is_cache_stale.assert_not_called()
        mock_manager.update_printing_count.assert_called_once_with(6)


class TestMain:
    """Test main CLI entry point."""

    def test_main_no_command(self, tmp_path: Path):
        """Should print help when no command given."""
        with patch("argparse.ArgumentParser.print_help") as mock_help:
            main(["--data-dir", str(tmp_path)])
            mock_help.assert_called_once()

    def test_main_status_command(self, tmp_path: Path):
        """Should run show_status for the status command."""
        with patch("manaflood.cli.asyncio.run") as mock_run:
            main(["--data-dir", str(tmp_path), "status"])

        mock_run.assert_called_once()
        coroutine = mock_run.call_args[0][0]
        assert coroutine.__name__ == "show_status"
        coroutine.close()

    def test_main_download_with_file(self, tmp_path: Path):
        """Should pass --file and --force to download_data."""
        with patch("manaflood.cli.download_data", new=MagicMock()) as mock_download:
            with patch("manaflood.cli.asyncio.run"):
                main(["--data-dir", str(tmp_path), "download", "--file", "THS", "--force"])

        mock_download.assert_called_once_with(tmp_path, "THS", True)

    def test_main_creates_data_dir(self, tmp_path: Path):
        """Should create the data directory if it doesn't exist."""
        new_dir = tmp_path / "new_data_dir"
        with patch("manaflood.cli.asyncio.run") as mock_run:
            main(["--data-dir", str(new_dir), "status"])
        mock_run.call_args[0][0].close()

        assert new_dir.exists()

    def test_main_decks(self, tmp_path: Path, populated_store: CardStore, capsys):
        """The decks command lists nothing on a fresh database."""
        main(["--data-dir", str(tmp_path), "decks"])
        assert "No decks saved." in capsys.readouterr().out
