import json
import os
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from chartkit.application.cache import CacheOptions
from chartkit.application.data_manager import ChartDataManager
from chartkit.application.hub import ChartHub, HubConfig
from chartkit.application.registry import ClientRegistry
from chartkit.domain.entities import ChartSource
from chartkit.infrastructure.stores import InMemoryStore
from chartkit.interfaces.cli import CLI


def _cli(hub):
    cli = CLI(hub=hub)
    cli._setup_logging = Mock()
    return cli


class TestCLIParser:
    """Tests for argument parsing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cli = _cli(Mock())

    def test_chart_arguments(self):
        """Test parsing of the chart command."""
        args = self.cli.parser.parse_args([
            'chart', 'hot-100', '--source', 'lastfm', '--date', '2024-01-06', '--limit', '10', '--no-cache',
        ])
        assert args.command == 'chart'
        assert args.source.tag == 'lastfm'
        assert args.date.isoformat() == '2024-01-06T00:00:00+00:00'
        assert args.limit == 10
        assert args.no_cache is True
        assert args.format == 'table'

    def test_custom_source(self):
        """Test that unknown source names become custom sources."""
        args = self.cli.parser.parse_args(['charts', '--source', 'Yandex'])
        assert args.source.is_custom
        assert args.source.tag == 'yandex'

    def test_search_defaults(self):
        """Test search defaults."""
        args = self.cli.parser.parse_args(['search', '--title', 'love'])
        assert args.limit == 20
        assert args.fuzzy is False
        assert args.charts is None
        assert args.log_level == 'WARNING'

    def test_invalid_date(self):
        """Test that malformed dates are rejected by argparse."""
        with pytest.raises(SystemExit) as exc_info:
            self.cli.parser.parse_args(['chart', 'hot-100', '--date', '06/01/2024'])
        assert exc_info.value.code == 2

    def test_no_command(self):
        """Test running without a command."""
        with pytest.raises(SystemExit) as exc_info:
            self.cli.run([])
        assert exc_info.value.code == 1

    @patch('chartkit.interfaces.cli.create_hub')
    def test_hub_built_lazily(self, mock_create_hub):
        """Test that the hub is created on first use only."""
        cli = CLI()
        mock_create_hub.assert_not_called()
        assert cli.hub is mock_create_hub.return_value
        assert cli.hub is mock_create_hub.return_value
        mock_create_hub.assert_called_once_with()


class TestCLICommands:
    """Tests for CLI commands against a static hub."""

    def test_chart_table(self, static_hub, capsys):
        """Test table output with movement markers."""
        _cli(static_hub).run(['chart', 'hot-100'])

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == 'hot-100 (billboard) - 2024-01-06'
        assert lines[2] == '  1. Love Story - Taylor Swift [NEW]'
        assert lines[3] == "  2. God's Plan - Drake [-1]"

    def test_chart_json(self, static_hub, capsys):
        """Test JSON output with a limit."""
        _cli(static_hub).run(['chart', 'hot-100', '--format', 'json', '--limit', '1'])

        data = json.loads(capsys.readouterr().out)
        assert data['chartType'] == 'hot-100'
        assert [e['title'] for e in data['entries']] == ['Love Story']

    def test_list_charts(self, static_hub, capsys):
        """Test listing charts of the default source."""
        _cli(static_hub).run(['charts'])
        assert capsys.readouterr().out.splitlines() == [
            'Available charts from billboard:',
            '  hot-100',
            '  pop-songs',
        ]

    def test_search_indexes_fetched_charts(self, static_hub, capsys):
        """Test that search fetches and indexes every chart of the source."""
        _cli(static_hub).run(['search', '--artist', 'Taylor Swift'])

        out = capsys.readouterr().out
        assert out.startswith('2 results from 2 charts')
        assert 'Love Story - Taylor Swift [hot-100]' in out
        assert 'Blank Space - Taylor Swift [pop-songs]' in out
        assert 'Drake' not in out
        assert static_hub.search_engine.indexed_charts == 2

    def test_search_new_only(self, static_hub, capsys):
        """Test the new-entries filter."""
        _cli(static_hub).run(['search', '--artist', 'taylor', '--new-only', '--chart', 'hot-100', 'pop-songs'])

        out = capsys.readouterr().out
        assert out.startswith('1 results')
        assert 'Love Story' in out
        assert 'Blank Space' not in out

    def test_search_rank_range(self, static_hub, capsys):
        """Test that one rank bound is enough."""
        _cli(static_hub).run(['search', '--title', 'plan', '--min-rank', '2'])
        out = capsys.readouterr().out
        assert out.startswith('1 results')
        assert "God's Plan" in out

    def test_search_requires_field(self, static_hub, capsys):
        """Test that search needs a title, artist or album."""
        with pytest.raises(SystemExit) as exc_info:
            _cli(static_hub).run(['search', '--fuzzy'])
        assert exc_info.value.code == 1
        assert 'Error: At least one of --title' in capsys.readouterr().err

    def test_compare(self, static_hub, capsys):
        """Test comparing two dates of the same chart."""
        _cli(static_hub).run(['compare', 'hot-100', '2024-01-01', '2024-01-08'])

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == 'hot-100: 2024-01-01 -> 2024-01-08'
        assert lines[1] == 'Entries: 2  New: 0  Dropped: 0'

    def test_trends(self, static_hub, capsys):
        """Test trends against the previous week."""
        _cli(static_hub).run(['trends', 'pop-songs', '--weeks-back', '2'])
        assert 'Entries: 1  New: 0  Dropped: 0' in capsys.readouterr().out

    def test_export(self, static_hub, capsys, tmp_path):
        """Test exporting charts to a CSV file."""
        _cli(static_hub).run([
            'export', 'hot-100', 'pop-songs', '--format', 'csv',
            '--filename', 'charts.csv', '--output', str(tmp_path),
        ])

        path = tmp_path / 'charts.csv'
        assert os.path.exists(path)
        lines = path.read_text(encoding='utf-8').splitlines()
        assert len(lines) == 4
        assert 'Exported 3 entries' in capsys.readouterr().out

    def test_export_svg(self, static_hub, capsys, tmp_path):
        """Test exporting a chart as an SVG bar chart."""
        _cli(static_hub).run([
            'export', 'hot-100', '--format', 'svg', '--width', '400', '--height', '300',
            '--filename', 'hot.svg', '--output', str(tmp_path),
        ])

        content = (tmp_path / 'hot.svg').read_text(encoding='utf-8')
        assert content.startswith('<svg width="400" height="300"')
        assert "God's Plan" in content
        assert 'Exported 2 entries' in capsys.readouterr().out

    def test_export_svg_too_small(self, static_hub, capsys, tmp_path):
        """Test that undersized SVG dimensions are rejected."""
        with pytest.raises(SystemExit) as exc_info:
            _cli(static_hub).run([
                'export', 'hot-100', '--format', 'svg', '--width', '50', '--output', str(tmp_path),
            ])
        assert exc_info.value.code == 1
        assert 'Width must be at least 100' in capsys.readouterr().err

    def test_export_invalid_filename(self, static_hub, capsys, tmp_path):
        """Test that invalid file names are rejected."""
        with pytest.raises(SystemExit) as exc_info:
            _cli(static_hub).run(['export', 'hot-100', '--filename', 'bad name.json', '--output', str(tmp_path)])
        assert exc_info.value.code == 1
        assert 'Invalid filename format' in capsys.readouterr().err

    def test_cache_stats_and_clear(self, static_hub, capsys):
        """Test cache inspection and clearing."""
        cli = _cli(static_hub)
        cli.run(['chart', 'hot-100'])
        capsys.readouterr()

        cli.run(['cache', 'stats'])
        assert json.loads(capsys.readouterr().out)['totalItems'] == 1

        cli.run(['cache', 'clear'])
        assert capsys.readouterr().out.strip() == 'Cache cleared'
        assert static_hub.get_cache_stats()['totalItems'] == 0

    def test_unregistered_source(self, static_hub, capsys):
        """Test a source without a client."""
        with pytest.raises(SystemExit) as exc_info:
            _cli(static_hub).run(['chart', 'top-tracks', '--source', 'lastfm'])
        assert exc_info.value.code == 1
        assert 'No client available' in capsys.readouterr().err

    def test_provider_error(self, static_hub, capsys):
        """Test that provider errors exit with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            _cli(static_hub).run(['chart', 'no-such-chart'])
        assert exc_info.value.code == 1
        assert 'Unknown chart type' in capsys.readouterr().err

    def test_logging_configured_from_flags(self, static_hub, capsys):
        """Test that logging flags reach setup."""
        cli = _cli(static_hub)
        cli.run(['charts', '--log-level', 'DEBUG', '--log-json'])
        cli._setup_logging.assert_called_once_with('DEBUG', True)

    def test_search_finds_charts_from_warm_persistent_cache(self, sample_chart, capsys):
        """Test that charts loaded from a persistent cache are searchable."""
        store = InMemoryStore()
        options = CacheOptions(persistent=True)
        chart = replace(sample_chart, date=datetime.now(timezone.utc))
        ChartDataManager(options, store=store).cache_chart(chart)

        client = Mock()
        client.get_chart.side_effect = AssertionError("chart should come from cache")
        registry = ClientRegistry()
        registry.add(ChartSource.BILLBOARD, client)
        hub = ChartHub(HubConfig(cache_options=options, auto_index=True), registry=registry, store=store)

        _cli(hub).run(['search', '--artist', 'Drake', '--chart', 'hot-100'])

        out = capsys.readouterr().out
        assert out.startswith('1 results')
        assert "God's Plan - Drake [hot-100]" in out
        client.get_chart.assert_not_called()
