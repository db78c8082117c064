"""Text formatter for TimeTrack productivity statistics.

Renders ProductivityStats as aligned plain-text reports for the CLI.
"""

from datetime import date

from timetrack.core.models import ProductivityStats


class TextFormatter:
    """Formats productivity statistics as human-readable plain text."""

    @staticmethod
    def format_duration(seconds: int) -> str:
        """Format seconds as 'Xh Ym' (e.g., '2h 15m').

        Truncates to whole minutes. Returns '0m' for zero/negative durations.
        """
        total_minutes = max(0, int(seconds)) // 60
        hours, minutes = divmod(total_minutes, 60)
        if hours == 0:
            return f"{minutes}m"
        return f"{hours}h {minutes}m"

    @staticmethod
    def _table(headers: tuple[str, str, str], rows: list[tuple[str, str, str]]) -> list[str]:
        """Render rows as ``name  time  share`` with right-aligned numbers."""
        name_w = max([len(headers[0])] + [len(r[0]) for r in rows])
        time_w = max([len(headers[1])] + [len(r[1]) for r in rows])
        pct_w = max([len(headers[2])] + [len(r[2]) for r in rows])

        header = f"  {headers[0]:<{name_w}}  {headers[1]:>{time_w}}  {headers[2]:>{pct_w}}"
        lines = [header, "  " + "─" * (len(header) - 2)]
        for name, time_str, pct in rows:
            lines.append(f"  {name:<{name_w}}  {time_str:>{time_w}}  {pct:>{pct_w}}")
        return lines

    @staticmethod
    def format_productivity(stats: ProductivityStats, day: date | None = None) -> str:
        """Render productivity statistics as aligned plain text."""
        fmt = TextFormatter.format_duration
        title = "Productivity"
        if day is not None:
            title += f": {day.strftime('%A, %B %d, %Y')}"
        lines = [title, ""]

        if stats.total_time == 0:
            lines.append("  No activity recorded.")
            return "\n".join(lines) + "\n"

        lines.append(f"  Score:          {stats.productivity_score}%")
        lines.append(f"  Tracked:        {fmt(stats.total_time)}")
        lines.append(f"  Productive:     {fmt(stats.productive_time)}")
        lines.append(f"  Distracting:    {fmt(stats.distracting_time)}")
        lines.append(f"  Uncategorized:  {fmt(stats.uncategorized_time)}")

        lines.append("")
        lines.append("Categories:")
        lines.extend(TextFormatter._table(
            ("Category", "Time", "Share"),
            [(c.category_name, fmt(c.total_seconds), f"{c.percentage}%")
             for c in stats.category_breakdown],
        ))

        lines.append("")
        lines.append("Top Applications:")
        lines.extend(TextFormatter._table(
            ("Application", "Time", "Share"),
            [(a.app_name, fmt(a.total_seconds), f"{a.percentage}%") for a in stats.top_apps],
        ))
        return "\n".join(lines) + "\n"
