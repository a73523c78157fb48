"""
Report service for completed analyses.

Produces the JSON export of a result and a Markdown remediation report with a
compromise verdict, the findings and per-category recommendations.
"""

import json
from typing import Dict, List

from orbguard_core.logic.models import AnalysisResult, IocCategory, Severity


CATEGORY_RECOMMENDATIONS: Dict[IocCategory, List[str]] = {
    IocCategory.PEGASUS: [
        "Preserve the artifacts and contact a digital security helpline before resetting",
        "Enable Lockdown Mode after the device has been restored",
        "Assume messages, calls and location history were exposed",
    ],
    IocCategory.PREDATOR: [
        "Preserve the artifacts and contact a digital security helpline before resetting",
        "Review recently opened links delivered by SMS or messaging apps",
        "Enable Lockdown Mode after the device has been restored",
    ],
    IocCategory.STALKERWARE: [
        "Consider your physical safety before removing the app, as the installer may be alerted",
        "Review apps with accessibility, device admin or location permissions",
        "Change the device passcode and account passwords from a trusted device",
    ],
    IocCategory.OTHER: [
        "Remove or update the affected app",
        "Review the app's network and background activity permissions",
    ],
}

COMPROMISED_STEPS = [
    "**Do not use the device for sensitive communications**",
    "Factory reset the device (do not restore from backup)",
    "Change all passwords from a different device",
    "Enable two-factor authentication on all accounts",
    "Contact a security professional for incident response",
    "Consider reporting to law enforcement",
]

CLEAN_STEPS = [
    "Keep the operating system updated to the latest version",
    "Enable Lockdown Mode if you are at high risk",
    "Be cautious of links from unknown senders",
    "Regularly review installed apps and profiles",
    "Run periodic forensic scans",
]


class ReportService:
    """Service rendering analysis results for export."""

    def export_json(self, result: AnalysisResult, indent: int = 2) -> str:
        """Serialize a result, including its summary statistics."""
        document = result.to_dict()
        document['summary'] = result.get_summary_statistics()
        return json.dumps(document, indent=indent, ensure_ascii=False)

    def remediation_report(self, result: AnalysisResult) -> str:
        """Generate a Markdown remediation report."""
        lines = [
            "# Forensic Analysis Report",
            "",
            f"**Analysis ID:** {result.id}",
            f"**Analysis Type:** {result.type.display_name}",
            f"**Date:** {result.started_at.isoformat()}",
        ]
        if result.completed_at:
            duration = (result.completed_at - result.started_at).total_seconds()
            lines.append(f"**Duration:** {duration:.0f}s")
        if result.ioc_version:
            lines.append(f"**Indicator Set:** {result.ioc_version} ({result.indicators_checked} indicators)")
        lines.append("")

        if result.has_threat:
            lines += ["## DEVICE MAY BE COMPROMISED", ""]
            top = max(result.findings, key=lambda f: (f.severity.rank, f.confidence))
            lines += [f"Highest confidence: {top.confidence * 100:.1f}% ({top.category.display_name})", ""]
        else:
            lines += ["## No Indicators of Compromise Found", ""]

        if result.truncated:
            lines += ["> Partial analysis: the artifact exceeded the scan limits, findings may be incomplete.", ""]

        lines += [
            "## Findings Summary",
            "",
            f"- Critical: {len(result.get_findings_by_severity(Severity.CRITICAL))}",
            f"- High: {len(result.get_findings_by_severity(Severity.HIGH))}",
            f"- Total: {len(result.findings)}",
            "",
        ]

        if result.findings:
            lines += ["## Detailed Findings", ""]
            for finding in result.findings:
                lines += [
                    f"### {finding.title}",
                    "",
                    f"**Severity:** {finding.severity.value.capitalize()}",
                    f"**Category:** {finding.category.display_name}",
                    f"**Confidence:** {finding.confidence * 100:.1f}%",
                ]
                if finding.matched_ioc_ids:
                    lines.append(f"**Indicators:** {', '.join(sorted(finding.matched_ioc_ids))}")
                lines += ["", finding.description, ""]

                if finding.evidence:
                    lines.append("**Evidence:**")
                    lines += [f"- `{excerpt}`" for excerpt in finding.evidence]
                    lines.append("")

                lines.append("**Recommendations:**")
                lines += [f"- {rec}" for rec in CATEGORY_RECOMMENDATIONS[finding.category]]
                lines.append("")

        lines += ["## General Recommendations", ""]
        steps = COMPROMISED_STEPS if result.has_threat else CLEAN_STEPS
        lines += [f"{number}. {step}" for number, step in enumerate(steps, 1)]

        return "\n".join(lines) + "\n"
