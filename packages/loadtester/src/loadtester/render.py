"""
Formatting of load test results for console output.

Pure functions: they only read the report models and never fail on empty or
zero-valued counters.
"""

from rich import box
from rich.table import Table

from .types import LoadTestReport, Summary, SuiteReport, TrackReport


def format_bitrate(num_bytes: int, elapsed: float) -> str:
    """Human readable bitrate of ``num_bytes`` transferred over ``elapsed`` seconds."""
    bps = num_bytes * 8 / elapsed if elapsed > 0 else 0.0
    if bps < 1000:
        return f"{int(bps)}bps"
    if bps < 1_000_000:
        return f"{bps / 1000:.1f}kbps"
    return f"{bps / 1_000_000:.1f}mbps"


def loss_rate(packets: int, dropped: int) -> float:
    """Fraction of packets lost; 0 when nothing was expected."""
    total = packets + dropped
    return dropped / total if total > 0 else 0.0


def format_loss_rate(packets: int, dropped: int) -> str:
    return f"{dropped} ({loss_rate(packets, dropped) * 100:.2f}%)"


def average_latency_ms(latency_total_ns: int, latency_count: int) -> float | None:
    if latency_count <= 0:
        return None
    return latency_total_ns / latency_count / 1_000_000


def format_latency(latency_total_ns: int, latency_count: int) -> str:
    avg = average_latency_ms(latency_total_ns, latency_count)
    return "" if avg is None else f"{avg:.2f}ms"


def _table(*headers: str) -> Table:
    table = Table(box=box.ROUNDED, header_style="bold")
    for header in headers:
        table.add_column(header)
    return table


def _track_label(track: TrackReport) -> str:
    if track.track_name:
        return f"{track.track_id} ({track.track_name})"
    return track.track_id


def render_track_table(tracks: list[TrackReport]) -> Table | None:
    """One block of rows per tester, tracks ordered by kind."""
    by_tester: dict[str, list[TrackReport]] = {}
    for track in tracks:
        by_tester.setdefault(track.tester, []).append(track)
    if not by_tester:
        return None

    table = _table("Tester", "Track", "Kind", "Pkts.", "Bitrate", "Pkt. Loss", "Latency")
    names = sorted(by_tester)
    for n, name in enumerate(names):
        tester_tracks = sorted(by_tester[name], key=lambda t: t.kind.value)
        for i, track in enumerate(tester_tracks):
            table.add_row(
                name if i == 0 else "",
                _track_label(track),
                track.kind.value,
                str(track.packets),
                format_bitrate(track.bytes, track.elapsed),
                format_loss_rate(track.packets, track.dropped),
                format_latency(track.latency_total_ns, track.latency_count),
                end_section=n != len(names) - 1 and i == len(tester_tracks) - 1,
            )
    return table


def render_summary_table(testers: list[Summary], total: Summary) -> Table | None:
    if not testers:
        return None

    table = _table("Tester", "Tracks", "Bitrate", "Total Pkt. Loss", "Latency", "Error")
    for s in testers:
        table.add_row(
            s.name,
            f"{s.tracks}/{s.expected}",
            format_bitrate(s.bytes, s.elapsed),
            format_loss_rate(s.packets, s.dropped),
            format_latency(s.latency_total_ns, s.latency_count),
            s.error or "-",
        )

    # bitrate of all subscribers together, and per subscriber
    bitrate = (
        f"{format_bitrate(total.bytes, total.elapsed)} "
        f"({format_bitrate(total.bytes // len(testers), total.elapsed)} avg)"
    )
    table.add_row(
        total.name,
        f"{total.tracks}/{total.expected}",
        bitrate,
        format_loss_rate(total.packets, total.dropped),
        format_latency(total.latency_total_ns, total.latency_count),
        str(total.error_count),
        style="bold reverse",
    )
    return table


def render_report(report: LoadTestReport) -> list[tuple[str, Table]]:
    """Titled tables of a load test report, in display order."""
    rendered = []
    track_table = render_track_table(report.tracks)
    if track_table is not None:
        rendered.append(("Track loading:", track_table))
    summary_table = render_summary_table(report.testers, report.total)
    if summary_table is not None:
        rendered.append(("Subscriber summaries:", summary_table))
    return rendered


def render_suite(report: SuiteReport) -> Table | None:
    rows = [r for r in report.results if r.tracks > 0]
    if not rows:
        return None

    table = _table("Pubs", "Subs", "Tracks", "Audio", "Video", "Pkt. Loss", "Errors")
    for r in rows:
        table.add_row(
            str(r.case.publishers),
            str(r.case.subscribers),
            str(r.tracks),
            "Yes",
            "Yes" if r.case.video else "No",
            format_loss_rate(r.packets, r.dropped),
            str(r.error_count),
        )
    return table
