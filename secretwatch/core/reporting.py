from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from .filters import filter_with_reason
from .models import FileReport, TabRecord


class Reporter:
    def __init__(self, out_dir: Path) -> None:
        self.out_dir = out_dir

    def write_all(self, reports: List[FileReport]) -> Dict[str, int]:
        self.out_dir.mkdir(parents=True, exist_ok=True)
        rows = file_report_rows(reports)
        # Always write secrets.json with exact structure:
        # {secret, secret_type, severity, line_num, file location}
        (self.out_dir / "secrets.json").write_text(json.dumps(rows, indent=2))

        md_lines = ["# Secrets Findings", ""]
        for row in rows:
            md_lines.append(f"- **file**: {row['file location']}  ")
            md_lines.append(f"  **line**: {row['line_num']}  ")
            md_lines.append(f"  **type**: {row['secret_type']} ({row['severity']})  ")
            md_lines.append(f"  **secret**: `{row['secret']}`  ")
            md_lines.append("")
        (self.out_dir / "secrets.md").write_text("\n".join(md_lines))

        summary = {
            "files": len(reports),
            "findings": len(rows),
            "artifacts": 4,
        }
        by_type: Dict[str, int] = {}
        for row in rows:
            by_type[row["secret_type"]] = by_type.get(row["secret_type"], 0) + 1
        index = {**summary, "by_type": by_type}
        (self.out_dir / "index.json").write_text(json.dumps(index, indent=2))

        lines = ["# Scan Summary", ""]
        for k, v in summary.items():
            lines.append(f"- {k}: {v}")
        if by_type:
            lines.append("")
            lines.append("## By type")
            for secret_type, count in sorted(by_type.items()):
                lines.append(f"- {secret_type}: {count}")
        lines.append("")
        (self.out_dir / "summary.md").write_text("\n".join(lines))
        return summary


def file_report_rows(reports: List[FileReport]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for report in reports:
        for match, line_num in zip(report.matches, report.line_numbers):
            rows.append(
                {
                    "secret": match.matched_text,
                    "secret_type": match.secret_type,
                    "severity": match.severity.value,
                    "line_num": line_num,
                    "file location": report.file_location,
                }
            )
    return rows


def tab_status_payload(tab_id: int, record: TabRecord) -> Dict[str, Any]:
    """JSON view of a tab record, with likely false positives annotated."""
    payload = record.to_dict()
    for item, finding in zip(payload["findings"], record.findings):
        reason = filter_with_reason(finding)
        if reason is not None:
            item["filtered"] = reason
    return {"tab_id": tab_id, **payload}
