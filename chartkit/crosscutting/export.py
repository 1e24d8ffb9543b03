import csv
import io
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union
from xml.sax.saxutils import escape

from chartkit.domain.entities import ChartAnalytics, ChartData, ChartSource, TrendData, coerce_metadata
from chartkit.domain.normalization import format_date, utc_now

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ('csv', 'json', 'svg')
MIN_SVG_SIZE = 100
SVG_MAX_ENTRIES = 20
FILENAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+\.[a-zA-Z0-9]+$')

CSV_HEADERS = [
    'Chart Type',
    'Date',
    'Rank',
    'Title',
    'Artist',
    'Album',
    'Last Week',
    'Peak Position',
    'Weeks on Chart',
    'Source',
]
CSV_METADATA_HEADERS = ['Cover URL', 'Metadata']


@dataclass
class ExportOptions:
    """Options for an export run."""

    format: str = 'json'
    filename: Optional[str] = None
    include_metadata: bool = False
    date_format: str = '%Y-%m-%d'
    width: int = 800
    height: int = 600


@dataclass
class ExportResult:
    """Outcome of an export. data is CSV or SVG text, or a JSON-ready dict."""

    success: bool
    filename: str
    data: Any = None
    size: int = 0
    error: Optional[str] = None

    def content(self) -> str:
        """Serialized file content."""
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, indent=2, ensure_ascii=False)


def _optional_int(value: Optional[int]) -> str:
    return '' if value is None else str(value)


def _svg_number(value: float) -> str:
    return f"{round(value, 2):g}"


class ExportManager:
    """Serializes charts, trends and analytics to CSV, JSON or an SVG bar chart."""

    def export_chart_data(self, data: Union[ChartData, Sequence[ChartData]],
                          options: ExportOptions) -> ExportResult:
        """Export one chart or a list of charts. Failures are reported in the result, not raised."""
        charts = [data] if isinstance(data, ChartData) else list(data)
        filename = options.filename or self.generate_filename(charts, options.format)

        try:
            if options.format == 'csv':
                return self._export_to_csv(charts, filename, options)
            if options.format == 'json':
                return self._export_to_json(charts, filename, options)
            if options.format == 'svg':
                return self._export_to_svg(charts, filename, options)
            raise ValueError(f"Unsupported export format: {options.format}")
        except Exception as e:
            logger.error(f"Export to {options.format} failed: {e}")
            return ExportResult(success=False, filename=options.filename or 'export', error=str(e))

    def export_trends(self, trends: List[TrendData], options: ExportOptions) -> ExportResult:
        """Export trend entries as a pseudo-chart of type 'trends'."""
        source = trends[0].entry.source if trends else ChartSource.custom('unknown')
        chart = ChartData(
            chart_type='trends',
            date=utc_now(),
            entries=tuple(t.entry for t in trends),
            source=source,
            total_entries=len(trends),
            metadata=coerce_metadata({
                'exportType': 'trends',
                'trendsData': [
                    {'trend': t.trend.value, 'positionChange': t.position_change}
                    for t in trends
                ],
            }),
        )
        return self.export_chart_data(chart, options)

    def export_analytics(self, analytics: ChartAnalytics, options: ExportOptions) -> ExportResult:
        """Export analytics. JSON keeps the full structure, CSV lists the trend entries."""
        if options.format == 'json':
            data = analytics.to_json()
            return ExportResult(
                success=True,
                data=data,
                filename=options.filename or 'analytics.json',
                size=len(json.dumps(data, indent=2, ensure_ascii=False).encode('utf-8')),
            )

        chart = ChartData(
            chart_type='analytics',
            date=utc_now(),
            entries=tuple(t.entry for t in analytics.trends),
            source=ChartSource.custom('analytics'),
            total_entries=analytics.total_entries,
            metadata=coerce_metadata({'exportType': 'analytics'}),
        )
        return self.export_chart_data(chart, options)

    def save(self, result: ExportResult, directory: Union[str, Path] = '.') -> Path:
        """Write a successful export to directory/filename and return the path."""
        if not result.success:
            raise ValueError(f"Cannot save failed export: {result.error}")

        path = Path(directory) / result.filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(result.content())
        logger.info(f"Export saved to {path}")
        return path

    @staticmethod
    def get_supported_formats() -> List[str]:
        return list(SUPPORTED_FORMATS)

    @classmethod
    def validate_options(cls, options: ExportOptions) -> Dict[str, Any]:
        errors = []
        if options.format not in cls.get_supported_formats():
            errors.append(f"Unsupported format: {options.format}")
        if options.filename and not FILENAME_PATTERN.match(options.filename):
            errors.append('Invalid filename format')
        if options.width < MIN_SVG_SIZE:
            errors.append(f"Width must be at least {MIN_SVG_SIZE}")
        if options.height < MIN_SVG_SIZE:
            errors.append(f"Height must be at least {MIN_SVG_SIZE}")
        return {'valid': not errors, 'errors': errors}

    @staticmethod
    def generate_filename(charts: Sequence[ChartData], fmt: str) -> str:
        timestamp = format_date(utc_now())
        name = charts[0].chart_type if len(charts) == 1 else 'multiple-charts'
        return f"{name}-{timestamp}.{fmt}"

    def _export_to_csv(self, charts: List[ChartData], filename: str,
                       options: ExportOptions) -> ExportResult:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')

        headers = list(CSV_HEADERS)
        if options.include_metadata:
            headers.extend(CSV_METADATA_HEADERS)
        writer.writerow(headers)

        for chart in charts:
            for entry in chart.entries:
                row = [
                    chart.chart_type,
                    format_date(chart.date, options.date_format),
                    str(entry.rank),
                    entry.title,
                    entry.artist,
                    entry.album or '',
                    _optional_int(entry.last_week),
                    _optional_int(entry.peak_position),
                    _optional_int(entry.weeks_on_chart),
                    entry.source.tag,
                ]
                if options.include_metadata:
                    row.append(entry.metadata.get('cover') or '')
                    row.append(json.dumps(entry.metadata, ensure_ascii=False))
                writer.writerow(row)

        content = buffer.getvalue().rstrip('\n')
        return ExportResult(
            success=True,
            data=content,
            filename=filename,
            size=len(content.encode('utf-8')),
        )

    def _export_to_json(self, charts: List[ChartData], filename: str,
                        options: ExportOptions) -> ExportResult:
        export_data: Dict[str, Any] = {
            'exportDate': utc_now().isoformat(),
            'format': 'json',
            'data': [chart.to_json() for chart in charts],
        }
        if options.include_metadata:
            export_data['metadata'] = {
                'totalCharts': len(charts),
                'totalEntries': sum(len(chart.entries) for chart in charts),
                'sources': sorted({chart.source.tag for chart in charts}),
                'chartTypes': sorted({chart.chart_type for chart in charts}),
            }

        return ExportResult(
            success=True,
            data=export_data,
            filename=filename,
            size=len(json.dumps(export_data, indent=2, ensure_ascii=False).encode('utf-8')),
        )

    def _export_to_svg(self, charts: List[ChartData], filename: str,
                       options: ExportOptions) -> ExportResult:
        """Bar chart of the first chart's top entries. Higher-ranked entries get taller bars."""
        if not charts:
            raise ValueError("No chart data to export")

        chart = charts[0]
        entries = chart.entries[:SVG_MAX_ENTRIES]
        width, height = options.width, options.height

        lines = [
            f'<svg width="{width}" height="{height}" xmlns="http://www.w3.org/2000/svg">',
            f'  <rect width="{width}" height="{height}" fill="white"/>',
            f'  <text x="10" y="30" font-size="20" font-weight="bold">{escape(chart.chart_type)}</text>',
            f'  <text x="10" y="50" font-size="14" fill="gray">'
            f'{escape(format_date(chart.date, options.date_format))}</text>',
        ]

        if entries:
            bar_width = (width - 100) / len(entries)
            max_rank = max(entry.rank for entry in entries)
            for i, entry in enumerate(entries):
                x = 50 + i * bar_width
                bar_height = (height - 150) * (1 - entry.rank / max_rank)
                y = height - 100 - bar_height
                label_x = x + bar_width / 2
                title = entry.title if len(entry.title) <= 15 else f"{entry.title[:15]}..."

                lines.append(
                    f'  <rect x="{_svg_number(x)}" y="{_svg_number(y)}" width="{_svg_number(bar_width - 2)}" '
                    f'height="{_svg_number(bar_height)}" fill="hsl({i * 20}, 70%, 50%)" opacity="0.8"/>'
                )
                lines.append(
                    f'  <text x="{_svg_number(label_x)}" y="{height - 80}" font-size="10" '
                    f'text-anchor="middle">#{entry.rank}</text>'
                )
                lines.append(
                    f'  <text x="{_svg_number(label_x)}" y="{height - 65}" font-size="8" '
                    f'text-anchor="middle">{escape(title)}</text>'
                )

        lines.append('</svg>')
        content = '\n'.join(lines)
        return ExportResult(
            success=True,
            data=content,
            filename=filename,
            size=len(content.encode('utf-8')),
        )
