"""Markdown report generation for saved research sets."""

from datetime import datetime
from pathlib import Path
from typing import List, Optional
from research_aid.entities import CompsRow, ResearchSet, ThesisNote
from research_aid.comps import order_anchor_first
from research_aid.thesis import phase_progress
from research_aid.valuation import RelativeValuation, calculate_relative_valuation, column_medians


class ResearchReport:
    """
    Generates a Markdown research memo from a saved research set.

    Creates a structured report with the comps snapshot, the anchor's
    relative valuation, the thesis and checklist progress, and the user's
    assumptions.

    Representation Invariants:
    - The anchor row is always listed first in the comps table
    - Unknown multiples render as "n/a", never as 0
    - Report is valid Markdown
    """

    def __init__(self, research_set: ResearchSet) -> None:
        """
        Initialize report generator for a research set.

        Args:
            research_set: Saved research set to report on
        """
        self._set = research_set

    def generate(
        self,
        current_price: Optional[float] = None,
        output_path: Optional[Path] = None
    ) -> str:
        """
        Generate a complete Markdown report.

        Preconditions:
        - The research set has been saved (its snapshot is final)

        Postconditions:
        - Returns complete Markdown report as string
        - If output_path provided, saves report to file

        Args:
            current_price: Anchor share price for implied prices (omitted if None)
            output_path: Optional path to save report

        Returns:
            Markdown report as string
        """
        rows = order_anchor_first(self._set.comps_snapshot, self._set.anchor_ticker)
        valuation = calculate_relative_valuation(rows, self._set.anchor_ticker, current_price or 0.0)

        sections = [
            self._generate_header(),
            self._generate_comps_table(rows),
            self._generate_valuation(valuation, current_price),
            self._generate_thesis(self._set.thesis),
            self._generate_assumptions(),
        ]
        report = "\n\n".join(sections)

        # Save if path provided
        if output_path:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(report, encoding='utf-8')

        return report

    def _generate_header(self) -> str:
        """Generate report header."""
        peers = ", ".join(self._set.comp_tickers) or "none"
        return f"""# {self._set.name}

**Anchor:** {self._set.anchor_ticker}
**Peers:** {peers}
**Saved:** {self._set.created_at}

---
"""

    def _generate_comps_table(self, rows: List[CompsRow]) -> str:
        """Generate the comps table with a median footer."""
        lines = ["## Comparable Companies", ""]
        if not rows:
            lines.append("_No comps data was captured._")
            return "\n".join(lines)

        lines.append("| Ticker | Name | Mkt Cap | EV | Revenue | EBITDA | P/E | EV/EBITDA | EV/Rev |")
        lines.append("|--------|------|---------|----|---------|--------|-----|-----------|--------|")

        for r in rows:
            ticker = f"**{r.ticker}** (anchor)" if r.ticker == self._set.anchor_ticker else r.ticker
            lines.append(
                f"| {ticker} | {r.name} | {_billions(r.market_cap)} | {_billions(r.ev)} "
                f"| {_billions(r.revenue)} | {_billions(r.ebitda)} | {_multiple(r.pe_ratio)} "
                f"| {_multiple(r.ev_ebitda)} | {_multiple(r.ev_revenue)} |"
            )

        med = column_medians(rows)
        lines.append(
            f"| Median | | {_billions(med['market_cap'])} | {_billions(med['ev'])} "
            f"| {_billions(med['revenue'])} | {_billions(med['ebitda'])} | {_multiple(med['pe_ratio'])} "
            f"| {_multiple(med['ev_ebitda'])} | {_multiple(med['ev_revenue'])} |"
        )
        return "\n".join(lines)

    def _generate_valuation(self, valuation: RelativeValuation, current_price: Optional[float]) -> str:
        """Generate the relative valuation section."""
        lines = ["## Relative Valuation", ""]
        if current_price:
            lines.append(f"**Current Price:** ${current_price:,.2f}")
            lines.append("")

        for item in valuation.multiples.values():
            if item.premium_pct is None:
                lines.append(f"- **{item.label}:** insufficient data")
                continue
            direction = "premium" if item.premium_pct > 0 else "discount"
            line = (
                f"- **{item.label}:** {item.anchor_multiple:.1f}x vs median {item.median:.1f}x "
                f"({abs(item.premium_pct):.1f}% {direction})"
            )
            if item.implied_price is not None:
                line += f", implied price ${item.implied_price:,.2f}"
            lines.append(line)

        return "\n".join(lines)

    def _generate_thesis(self, note: Optional[ThesisNote]) -> str:
        """Generate thesis section with checklist progress."""
        lines = ["## Thesis", ""]
        if note is None:
            lines.append("_No thesis was saved with this research set._")
            return "\n".join(lines)

        for label, text in [
            ("Bull Case", note.bull),
            ("Bear Case", note.bear),
            ("Catalysts", note.catalysts),
            ("Risks", note.risks),
            ("Target Price", note.target_price),
        ]:
            if text.strip():
                lines.append(f"### {label}")
                lines.append("")
                lines.append(text.strip())
                lines.append("")

        lines.append("### Checklist")
        lines.append("")
        for phase, done, total in phase_progress(note):
            mark = "x" if total and done == total else " "
            lines.append(f"- [{mark}] {phase}: {done}/{total}")

        return "\n".join(lines)

    def _generate_assumptions(self) -> str:
        lines = ["## Assumptions", ""]
        lines.append(self._set.assumptions.strip() or "_None recorded._")
        return "\n".join(lines)


def _billions(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"${value:,.1f}B"


def _multiple(value: Optional[float]) -> str:
    if not value:
        return "n/a"
    return f"{value:.1f}x"


def save_report(
    report: str,
    research_set: ResearchSet,
    base_path: Path
) -> Path:
    """
    Save report to file with timestamp.

    Args:
        report: Report content (Markdown string)
        research_set: Research set the report was generated from
        base_path: Base directory for reports

    Returns:
        Path to saved report file
    """
    base_path.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"{research_set.anchor_ticker}_{timestamp}.md"
    filepath = base_path / filename

    filepath.write_text(report, encoding='utf-8')
    return filepath
