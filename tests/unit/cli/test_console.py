"""Unit tests for CLI console helpers."""

from rich.console import Console
from rich.table import Table

from cli.console import STATUS_STYLES, console, create_table, styled_status


class TestConsole:
    def test_console_is_rich_console(self):
        assert isinstance(console, Console)

    def test_create_table(self):
        table = create_table("Sources")
        assert isinstance(table, Table)
        assert table.title == "Sources"


class TestStyledStatus:
    """Tests for styled_status."""

    def test_known_status(self):
        assert styled_status("healthy") == "[green]healthy[/green]"
        assert styled_status("missing") == f"[{STATUS_STYLES['missing']}]missing[/{STATUS_STYLES['missing']}]"

    def test_unknown_status(self):
        assert styled_status("odd") == "[white]odd[/white]"

    def test_none(self):
        assert styled_status(None) == "[dim]unknown[/dim]"
