import argparse
import json
import logging
import signal
import sys
import time
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

from chartkit.application.hub import ChartHub, create_hub
from chartkit.application.search import NumericRange, SearchQuery
from chartkit.crosscutting.export import ExportManager, ExportOptions
from chartkit.crosscutting.logging import log_error, setup_logging
from chartkit.domain.entities import ChartAnalytics, ChartData, ChartSource, FetchOptions
from chartkit.domain.normalization import format_date, to_utc

logger = logging.getLogger(__name__)


def _date_arg(value: str) -> datetime:
    """argparse type for YYYY-MM-DD (or full ISO) dates, interpreted as UTC."""
    try:
        return to_utc(datetime.fromisoformat(value))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")


def _source_arg(value: str) -> ChartSource:
    return ChartSource.parse(value)


class CLI:
    """Command Line Interface for chartkit."""

    def __init__(self, hub: Optional[ChartHub] = None):
        """Initialize CLI.

        Args:
            hub: Hub to run commands against; built from configuration on first use if omitted
        """
        self._hub = hub
        self.parser = self._create_parser()
        self._setup_signal_handlers()
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='WARNING',
            help='Set logging level'
        )
        common.add_argument(
            '--log-json',
            action='store_true',
            help='Emit structured JSON log lines'
        )

        parser = argparse.ArgumentParser(
            prog='chartkit',
            description='Fetch, cache, search and export music charts'
        )
        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        # Chart command
        chart_parser = subparsers.add_parser('chart', parents=[common], help='Show a chart')
        chart_parser.add_argument('chart_type', help='Chart type, e.g. hot-100')
        chart_parser.add_argument('--source', type=_source_arg, help='Chart source (default: billboard)')
        chart_parser.add_argument('--date', type=_date_arg, help='Chart date (YYYY-MM-DD)')
        chart_parser.add_argument('--limit', type=int, help='Maximum number of entries')
        chart_parser.add_argument('--no-cache', action='store_true', help='Bypass the cache')
        chart_parser.add_argument(
            '--format',
            choices=['table', 'json'],
            default='table',
            help='Output format (default: table)'
        )

        # Charts command
        charts_parser = subparsers.add_parser('charts', parents=[common], help='List available charts')
        charts_parser.add_argument('--source', type=_source_arg, help='Chart source (default: billboard)')

        # Search command
        search_parser = subparsers.add_parser('search', parents=[common], help='Search chart entries')
        search_parser.add_argument('--title', help='Title to search for')
        search_parser.add_argument('--artist', help='Artist to search for')
        search_parser.add_argument('--album', help='Album to search for')
        search_parser.add_argument(
            '--chart',
            nargs='+',
            dest='charts',
            help='Chart types to search (default: all charts of the source)'
        )
        search_parser.add_argument('--source', type=_source_arg, help='Chart source (default: billboard)')
        search_parser.add_argument('--fuzzy', action='store_true', help='Enable fuzzy matching')
        search_parser.add_argument('--min-rank', type=int, help='Minimum rank')
        search_parser.add_argument('--max-rank', type=int, help='Maximum rank')
        search_parser.add_argument('--new-only', action='store_true', help='Only entries new to the chart')
        search_parser.add_argument('--limit', type=int, default=20, help='Maximum results (default: 20)')

        # Compare command
        compare_parser = subparsers.add_parser('compare', parents=[common], help='Compare two chart dates')
        compare_parser.add_argument('chart_type', help='Chart type')
        compare_parser.add_argument('date1', type=_date_arg, help='Earlier chart date')
        compare_parser.add_argument('date2', type=_date_arg, help='Later chart date')
        compare_parser.add_argument('--source', type=_source_arg, help='Chart source (default: billboard)')

        # Trends command
        trends_parser = subparsers.add_parser('trends', parents=[common], help='Show chart movers')
        trends_parser.add_argument('chart_type', help='Chart type')
        trends_parser.add_argument('--source', type=_source_arg, help='Chart source (default: billboard)')
        trends_parser.add_argument('--weeks-back', type=int, default=1, help='Weeks to compare against')

        # Export command
        export_parser = subparsers.add_parser('export', parents=[common], help='Export charts to a file')
        export_parser.add_argument('chart_types', nargs='+', help='Chart types to export')
        export_parser.add_argument('--source', type=_source_arg, help='Chart source (default: billboard)')
        export_parser.add_argument('--date', type=_date_arg, help='Chart date (YYYY-MM-DD)')
        export_parser.add_argument(
            '--format',
            choices=ExportManager.get_supported_formats(),
            default='json',
            help='Export format (default: json)'
        )
        export_parser.add_argument('--filename', help='Output file name')
        export_parser.add_argument('--output', default='.', help='Output directory (default: .)')
        export_parser.add_argument('--include-metadata', action='store_true', help='Include entry metadata')
        export_parser.add_argument('--width', type=int, default=800, help='SVG width in pixels (default: 800)')
        export_parser.add_argument('--height', type=int, default=600, help='SVG height in pixels (default: 600)')

        # Cache command
        cache_parser = subparsers.add_parser('cache', parents=[common], help='Inspect or clear the cache')
        cache_parser.add_argument('action', choices=['stats', 'clear'], help='Cache action')
        cache_parser.add_argument('--chart', dest='chart_type', help='Only clear this chart type')
        cache_parser.add_argument('--source', type=_source_arg, help='Only clear this source')

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.warning(f"Received signal {signum}, shutting down...")
            self._cleanup_resources()
            sys.exit(130)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Log execution time."""
        if self._start_time:
            duration = time.time() - self._start_time
            logger.debug(f"CLI execution time: {duration:.2f}s")

    def _setup_logging(self, level: str, structured: bool = False) -> None:
        setup_logging(level, structured=structured)

    @property
    def hub(self) -> ChartHub:
        if self._hub is None:
            self._hub = create_hub()
        return self._hub

    def _show_chart(self, args: argparse.Namespace) -> None:
        options = FetchOptions(date=args.date, limit=args.limit, use_cache=not args.no_cache)
        chart = self.hub.get_chart(args.chart_type, args.source, options)

        if args.format == 'json':
            print(json.dumps(chart.to_json(), indent=2, ensure_ascii=False))
            return

        self._print_chart(chart)

    def _print_chart(self, chart: ChartData) -> None:
        print(f"{chart.chart_type} ({chart.source}) - {format_date(chart.date)}")
        print("-" * 50)
        for entry in chart.entries:
            movement = ""
            if entry.last_week is None:
                movement = " [NEW]"
            elif entry.last_week != entry.rank:
                movement = f" [{entry.last_week - entry.rank:+d}]"
            print(f"{entry.rank:>3}. {entry.title} - {entry.artist}{movement}")

    def _list_charts(self, args: argparse.Namespace) -> None:
        source = args.source or self.hub.config.default_source
        charts = self.hub.get_available_charts(source)
        print(f"Available charts from {source}:")
        for chart_type in charts:
            print(f"  {chart_type}")

    def _search(self, args: argparse.Namespace) -> None:
        if not (args.title or args.artist or args.album):
            raise ValueError("At least one of --title, --artist or --album is required")

        source = args.source or self.hub.config.default_source
        chart_types = args.charts or self.hub.get_available_charts(source)

        charts: List[ChartData] = []
        for chart_type in chart_types:
            try:
                charts.append(self.hub.get_chart(chart_type, source))
            except Exception as e:
                logger.warning(f"Skipping chart {chart_type}: {e}")

        self.hub.index_charts([chart for chart in charts if not self.hub.search_engine.is_indexed(chart)])

        rank_range = None
        if args.min_rank is not None or args.max_rank is not None:
            rank_range = NumericRange(
                args.min_rank if args.min_rank is not None else 1,
                args.max_rank if args.max_rank is not None else sys.maxsize,
            )

        response = self.hub.search(SearchQuery(
            title=args.title,
            artist=args.artist,
            album=args.album,
            source=source,
            rank_range=rank_range,
            new_entries_only=args.new_only,
            fuzzy=args.fuzzy,
            limit=args.limit,
        ))

        stats = response.stats
        print(f"{stats.total_results} results from {stats.charts_searched} charts "
              f"({stats.search_time} ms)")
        for result in response.results:
            entry = result.entry
            print(f"{result.score:6.2f}  #{entry.rank:<3} {entry.title} - {entry.artist} "
                  f"[{result.chart_data.chart_type}]")

    def _print_analytics(self, analytics: ChartAnalytics) -> None:
        print(f"Entries: {analytics.total_entries}  New: {analytics.new_entries}  "
              f"Dropped: {analytics.dropped_entries}")
        print("Top climbers:")
        for trend in analytics.climbers:
            print(f"  +{trend.position_change:<3} #{trend.entry.rank} {trend.entry.title} - {trend.entry.artist}")
        print("Top fallers:")
        for trend in analytics.fallers:
            print(f"  {trend.position_change:<4} #{trend.entry.rank} {trend.entry.title} - {trend.entry.artist}")

    def _compare(self, args: argparse.Namespace) -> None:
        analytics = self.hub.compare_charts(args.chart_type, args.date1, args.date2, args.source)
        print(f"{args.chart_type}: {format_date(args.date1)} -> {format_date(args.date2)}")
        self._print_analytics(analytics)

    def _trends(self, args: argparse.Namespace) -> None:
        analytics = self.hub.get_trends(args.chart_type, args.source, args.weeks_back)
        self._print_analytics(analytics)

    def _export(self, args: argparse.Namespace) -> None:
        manager = ExportManager()
        options = ExportOptions(
            format=args.format,
            filename=args.filename,
            include_metadata=args.include_metadata,
            width=args.width,
            height=args.height,
        )
        validation = manager.validate_options(options)
        if not validation['valid']:
            raise ValueError("; ".join(validation['errors']))

        charts = [
            self.hub.get_chart(chart_type, args.source, FetchOptions(date=args.date))
            for chart_type in args.chart_types
        ]
        result = manager.export_chart_data(charts, options)
        if not result.success:
            raise RuntimeError(f"Export failed: {result.error}")

        path = manager.save(result, args.output)
        print(f"Exported {sum(len(c.entries) for c in charts)} entries to {path} ({result.size} bytes)")

    def _cache(self, args: argparse.Namespace) -> None:
        if args.action == 'stats':
            print(json.dumps(self.hub.get_cache_stats(), indent=2))
        else:
            self.hub.clear_cache(args.chart_type, args.source)
            print("Cache cleared")

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI. Exits with status 1 on failure."""
        self._start_time = time.time()

        args = self.parser.parse_args(argv)
        if not args.command:
            self.parser.print_help()
            sys.exit(1)

        self._setup_logging(args.log_level, args.log_json)

        handlers = {
            'chart': self._show_chart,
            'charts': self._list_charts,
            'search': self._search,
            'compare': self._compare,
            'trends': self._trends,
            'export': self._export,
            'cache': self._cache,
        }

        try:
            handlers[args.command](args)
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            sys.exit(130)
        except Exception as e:
            log_error(logger, f"{args.command} failed", e)
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    load_dotenv()
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
