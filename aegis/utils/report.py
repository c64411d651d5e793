"""
Report Generation Utilities for Aegis
CSV and plain-text executive summaries of a portfolio scan
"""

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from tabulate import tabulate

from ..core.model import PortfolioSummary, Severity

CSV_COLUMNS = [
    "ID", "Target", "Type", "Category", "Severity", "Location",
    "Detected_By", "Timestamp", "Description", "Recommendation",
]


class ReportGenerator:
    """Generate text and CSV reports from a portfolio summary."""

    def __init__(self, output_dir: str = "./reports"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger(__name__)

    def generate_csv_report(self, summary: PortfolioSummary,
                            filename: Optional[str] = None) -> str:
        """One CSV row per finding across every scanned target."""
        if not filename:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"findings_{timestamp}.csv"

        filepath = self.output_dir / filename

        with open(filepath, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.writer(csvfile)
            writer.writerow(CSV_COLUMNS)

            for report in summary.reports:
                for finding in report.findings:
                    writer.writerow([
                        finding.id,
                        finding.target,
                        finding.type,
                        finding.category,
                        finding.severity.value,
                        finding.location,
                        finding.detected_by,
                        finding.timestamp,
                        finding.description,
                        finding.recommendation,
                    ])

        self.logger.info(f"CSV report generated: {filepath}")
        return str(filepath)

    def severity_table(self, summary: PortfolioSummary, tablefmt: str = "grid") -> str:
        rows = [[s.value.capitalize(), summary.counts_by_severity.get(s.value, 0)] for s in Severity]
        return tabulate(rows, headers=["Severity", "Count"], tablefmt=tablefmt)

    def target_table(self, summary: PortfolioSummary, tablefmt: str = "grid") -> str:
        rows = [
            [report.target.identifier, len(report.findings), f"{report.score:g}",
             ", ".join(report.target.scan_sources) or "-"]
            for report in sorted(summary.reports, key=lambda r: (r.score, r.target.identifier))
        ]
        rows.extend([identifier, "-", "ERROR", error] for identifier, error in sorted(summary.errors.items()))
        return tabulate(rows, headers=["Target", "Findings", "Score", "Detectors"], tablefmt=tablefmt)

    def recommendation_table(self, summary: PortfolioSummary, limit: int = 10,
                             tablefmt: str = "grid") -> str:
        rows = [
            [rec.priority.value, rec.finding_type, rec.affected_target_count, rec.text]
            for rec in summary.recommendations[:limit]
        ]
        return tabulate(rows, headers=["Priority", "Type", "Targets", "Recommendation"], tablefmt=tablefmt)

    def generate_summary_report(self, summary: PortfolioSummary,
                                filename: Optional[str] = None) -> str:
        """Generate executive summary report."""
        if not filename:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"summary_{timestamp}.txt"

        filepath = self.output_dir / filename
        average = "n/a" if summary.average_score is None else f"{summary.average_score:g}"

        content: List[str] = []
        content.append("=" * 70)
        content.append("AEGIS PORTFOLIO SECURITY SUMMARY")
        content.append("=" * 70)
        content.append("")
        content.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        content.append(f"Scan Time: {summary.timestamp}")
        content.append(f"Run Status: {summary.status.value}")
        content.append("")

        content.append("PORTFOLIO OVERVIEW")
        content.append("-" * 20)
        content.append(f"Targets: {summary.total_targets}")
        content.append(f"Total Findings: {summary.total_findings}")
        content.append(f"Average Score: {average}")
        content.append(f"Compliance Status: {summary.compliance_status}")
        content.append("")

        content.append("FINDINGS BY SEVERITY")
        content.append(self.severity_table(summary))
        content.append("")

        content.append("TARGETS")
        content.append(self.target_table(summary))
        content.append("")

        if summary.recommendations:
            content.append("TOP RECOMMENDATIONS")
            content.append(self.recommendation_table(summary))
            content.append("")

        if summary.action_items:
            content.append("ACTION ITEMS")
            content.append(tabulate(
                [[item.priority.value, item.title, f"{item.current_score:g}", item.due_date.isoformat(), item.assignee]
                 for item in summary.action_items],
                headers=["Priority", "Title", "Score", "Due", "Assignee"],
                tablefmt="grid",
            ))
            content.append("")

        content.append("=" * 70)

        with open(filepath, "w", encoding="utf-8") as f:
            f.write("\n".join(content))

        self.logger.info(f"Summary report generated: {filepath}")
        return str(filepath)
