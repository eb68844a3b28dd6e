"""Human-readable rendering of a scenario report."""

from __future__ import annotations

from .assertions import render_operand
from .models import ScenarioReport, StepStatus


def render_text(report: ScenarioReport) -> str:
    verdict = "PASS" if report.passed else "FAIL"
    lines = [f"scenario {report.scenario_id}: {verdict}"]
    for step in report.steps:
        line = f"  [{step.status.value:<7}] {step.name}"
        if step.status == StepStatus.FAILED:
            line += f" reason={step.reason_code}"
            if step.tx_hashes:
                line += f" tx_hash={step.tx_hashes[-1]}"
        lines.append(line)
        if step.status == StepStatus.FAILED and step.message:
            lines.append(f"      {step.message}")
    for record in report.failures:
        lines.append(f"  failed check [{record.step}] {record.description}")
        lines.append(f"      expected: {render_operand(record.expected)}")
        lines.append(f"      actual:   {render_operand(record.actual)}")
        if record.tx_hash:
            lines.append(f"      tx_hash:  {record.tx_hash}")
    return "\n".join(lines)
