"""
Result Manager for Aegis
Handles storage of findings, reports and portfolio summaries
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from jinja2 import Template

from .errors import PersistenceError
from .model import Finding, PortfolioSummary, Report

HTML_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <title>Aegis Portfolio Security Report</title>
    <meta charset="utf-8">
    <style>
        body { font-family: Arial, sans-serif; margin: 20px; background-color: #f5f5f5; }
        .header { background: linear-gradient(135deg, #1e3c72 0%, #2a5298 100%); color: white; padding: 20px; border-radius: 10px; margin-bottom: 20px; }
        .summary { display: grid; grid-template-columns: repeat(auto-fit, minmax(250px, 1fr)); gap: 20px; margin-bottom: 30px; }
        .card { background: white; padding: 20px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
        .target { background: white; margin: 10px 0; padding: 15px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
        .finding { border-left: 4px solid #ccc; padding-left: 10px; margin: 8px 0; }
        .critical { border-left-color: #d32f2f; }
        .high { border-left-color: #f57c00; }
        .medium { border-left-color: #fbc02d; }
        .low { border-left-color: #388e3c; }
        .error { color: #d32f2f; }
        table { border-collapse: collapse; width: 100%; }
        td, th { border-bottom: 1px solid #eee; padding: 6px; text-align: left; }
    </style>
</head>
<body>
    <div class="header">
        <h1>Portfolio Security Report</h1>
        <p>Generated on {{ generated_at }} | Run status: {{ summary.status.value }}</p>
    </div>

    <div class="summary">
        <div class="card">
            <h3>Portfolio</h3>
            <p><strong>Targets:</strong> {{ summary.total_targets }}</p>
            <p><strong>Total Findings:</strong> {{ summary.total_findings }}</p>
            <p><strong>Average Score:</strong> {{ summary.average_score if summary.average_score is not none else "n/a" }}</p>
            <p><strong>Compliance Status:</strong> {{ summary.compliance_status }}</p>
        </div>

        <div class="card">
            <h3>Findings by Severity</h3>
            <p>Critical: {{ summary.counts_by_severity.critical }}</p>
            <p>High: {{ summary.counts_by_severity.high }}</p>
            <p>Medium: {{ summary.counts_by_severity.medium }}</p>
            <p>Low: {{ summary.counts_by_severity.low }}</p>
        </div>
    </div>

    <h2>Recommendations</h2>
    <table>
        <tr><th>Priority</th><th>Type</th><th>Targets</th><th>Recommendation</th></tr>
        {% for rec in summary.recommendations %}
        <tr><td>{{ rec.priority.value }}</td><td>{{ rec.finding_type }}</td><td>{{ rec.affected_target_count }}</td><td>{{ rec.text }}</td></tr>
        {% endfor %}
    </table>

    {% if summary.action_items %}
    <h2>Action Items</h2>
    <table>
        <tr><th>Priority</th><th>Title</th><th>Score</th><th>Due</th><th>Assignee</th></tr>
        {% for item in summary.action_items %}
        <tr><td>{{ item.priority.value }}</td><td>{{ item.title }}</td><td>{{ item.current_score }}</td><td>{{ item.due_date.isoformat() }}</td><td>{{ item.assignee }}</td></tr>
        {% endfor %}
    </table>
    {% endif %}

    <h2>Targets</h2>
    {% for report in summary.reports %}
    <div class="target">
        <h3>{{ report.target.identifier }} (score {{ report.score }})</h3>
        {% for finding in report.findings %}
        <div class="finding {{ finding.severity.value }}">
            <strong>{{ finding.severity.value.upper() }}</strong> {{ finding.type }} at {{ finding.location }}
            <br>{{ finding.description }}
            {% if finding.recommendation %}<br><em>{{ finding.recommendation }}</em>{% endif %}
        </div>
        {% endfor %}
    </div>
    {% endfor %}

    {% for identifier, error in summary.errors.items() %}
    <div class="target error"><h3>{{ identifier }}</h3><p>{{ error }}</p></div>
    {% endfor %}
</body>
</html>
"""


class ResultManager:
    """Manages durable storage of scan results and report generation."""

    def __init__(self, output_dir: str = "./reports"):
        self.output_dir = Path(output_dir)
        self.logger = logging.getLogger(__name__)
        try:
            (self.output_dir / "json").mkdir(parents=True, exist_ok=True)
            (self.output_dir / "html").mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create output directory {self.output_dir}: {e}") from e

    @property
    def findings_log(self) -> Path:
        return self.output_dir / "json" / "findings.jsonl"

    @property
    def reports_log(self) -> Path:
        return self.output_dir / "json" / "reports.jsonl"

    def _append(self, path: Path, record: Dict[str, Any]) -> None:
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e

    def record_finding(self, finding: Finding) -> None:
        self._append(self.findings_log, finding.to_dict())

    def record_report(self, report: Report) -> None:
        self._append(self.reports_log, report.to_dict())

    def save_summary(self, summary: PortfolioSummary) -> str:
        """Write the portfolio summary as a JSON report."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = self.output_dir / "json" / f"portfolio_{timestamp}.json"

        report = {
            "metadata": {
                "tool": "Aegis Portfolio Scanner",
                "generated_at": datetime.now().isoformat(),
            },
            "summary": summary.to_dict(),
        }

        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(report, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise PersistenceError(f"Failed to write {filepath}: {e}") from e

        self.logger.info(f"JSON report generated: {filepath}")
        return str(filepath)

    def generate_html_report(self, summary: PortfolioSummary) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = self.output_dir / "html" / f"portfolio_{timestamp}.html"

        html_content = Template(HTML_TEMPLATE).render(
            summary=summary,
            generated_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        )

        try:
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(html_content)
        except OSError as e:
            raise PersistenceError(f"Failed to write {filepath}: {e}") from e

        self.logger.info(f"HTML report generated: {filepath}")
        return str(filepath)

    def generate_reports(self, summary: PortfolioSummary) -> Dict[str, str]:
        """Generate all report formats; a failing format is logged and skipped."""
        reports = {}

        for name, generator in (("json", self.save_summary), ("html", self.generate_html_report)):
            try:
                reports[name] = generator(summary)
            except PersistenceError as e:
                self.logger.error(f"Error generating {name} report: {e}")

        self.logger.info(f"Generated {len(reports)} reports")
        return reports

    def load_findings(self, filepath: str) -> List[Finding]:
        """Load findings from a findings.jsonl log or a portfolio JSON report."""
        path = Path(filepath)
        findings = []

        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix == ".jsonl":
                    records = [json.loads(line) for line in f if line.strip()]
                else:
                    data = json.load(f)
                    reports = data.get("summary", data).get("reports", [])
                    records = [finding for report in reports for finding in report.get("findings", [])]
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Error loading findings from {path}: {e}") from e

        for record in records:
            try:
                findings.append(Finding.from_dict(record))
            except (KeyError, ValueError) as e:
                self.logger.warning(f"Skipping unreadable finding record in {path}: {e}")

        self.logger.info(f"Loaded {len(findings)} findings from {path}")
        return findings
