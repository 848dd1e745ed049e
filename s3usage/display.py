"""
Terminal rendering for monthly averages and usage history.
Uses rich library for tables.
"""

from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .models import CollectionResult, MonthlyAverage, PruneResult, UsageSample


def format_bytes(b: Optional[float]) -> str:
    """Format bytes to human readable."""
    if b is None:
        return "0 bytes"
    if abs(b) < 1024:
        return f"{b:.0f} bytes"
    for unit in ['KB', 'MB', 'GB', 'TB']:
        b /= 1024
        if abs(b) < 1024:
            return f"{b:.2f} {unit}"
    return f"{b / 1024:.2f} PB"


def monthly_table(averages: List[MonthlyAverage], year: int, month: int) -> Table:
    """Monthly averages, largest bucket first."""
    table = Table(title=f"Monthly Average Usage for {year}-{month:02d}")
    table.add_column("Bucket", style="cyan")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Objects", justify="right")
    table.add_column("Samples", justify="right", style="yellow")

    for avg in sorted(averages, key=lambda a: a.avg_size_bytes, reverse=True):
        table.add_row(
            avg.bucket_name,
            format_bytes(avg.avg_size_bytes),
            f"{int(avg.avg_object_count):,}",
            str(avg.sample_count),
        )
    return table


def history_table(bucket_name: str, samples: List[UsageSample]) -> Table:
    table = Table(title=f"Usage History for Bucket: {bucket_name}")
    table.add_column("Date", style="cyan")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Objects", justify="right")

    for sample in samples:
        table.add_row(
            sample.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            format_bytes(sample.size_bytes),
            f"{sample.object_count:,}",
        )
    return table


def average_table(avg: MonthlyAverage) -> Table:
    table = Table(title=f"{avg.bucket_name} - {avg.year}-{avg.month:02d}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Average size", format_bytes(avg.avg_size_bytes))
    table.add_row("Average size (bytes)", f"{avg.avg_size_bytes:,.2f}")
    table.add_row("Average objects", f"{avg.avg_object_count:,.2f}")
    table.add_row("Samples", str(avg.sample_count))
    return table


def print_collection_summary(console: Console, result: CollectionResult):
    console.print(f"\nStored {result.stored} samples, calculated {len(result.averages)} monthly averages "
                  f"in {result.duration:.1f}s")
    if result.errors:
        errors = Table(title=f"{result.failed} buckets failed")
        errors.add_column("Bucket", style="cyan")
        errors.add_column("Error", style="red")
        for bucket_name, error in sorted(result.errors.items()):
            errors.add_row(bucket_name, Text(error))
        console.print(errors)


def print_prune_summary(console: Console, result: PruneResult):
    if result.deleted == 0:
        console.print("No data to prune. All data points are still needed or no monthly "
                      "averages have been calculated yet.")
        return
    months = ", ".join(f"{y}-{m:02d}" for y, m in result.months)
    console.print(f"Successfully pruned {result.deleted} data points from completed months ({months}).")
