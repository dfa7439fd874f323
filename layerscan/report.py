# layerscan/report.py
"""
Rendering of scan reports as text lines or JSON.

Plain scan, one block per target:
    localhost (127.0.0.1) has the following ports open:
    TCP: [22, 8080]
    UDP: [53]

Discovery scan, one line per open port plus one per finding:
    127.0.0.1:6379/tcp session=tcp presentation=none application=redis/7.0.5 redis_mode=standalone
      [vulnerable] redis-unauthenticated-info: Redis (v7.0.5) on ... answered INFO without authentication
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from layerscan.scanner.base import LayerResult, PortReport, TargetReport, Transport


def render_ports(reports: Sequence[TargetReport]) -> List[str]:
    lines: List[str] = []
    for report in reports:
        name = f"{report.target.label} ({report.target.ip})"
        if report.error:
            lines.append(f"{name} could not be scanned: {report.error}")
            continue
        tcp = report.ports_for(Transport.TCP)
        udp = report.ports_for(Transport.UDP)
        if not tcp and not udp:
            lines.append(f"{name} has no open ports.")
            continue
        lines.append(f"{name} has the following ports open:")
        if tcp:
            lines.append(f"TCP: {tcp}")
        if udp:
            lines.append(f"UDP: {udp}")
    return lines


def render_discovery(reports: Sequence[TargetReport]) -> List[str]:
    lines: List[str] = []
    for report in reports:
        name = f"{report.target.label} ({report.target.ip})"
        if report.error:
            lines.append(f"{name} could not be scanned: {report.error}")
            continue
        if not report.port_reports:
            lines.append(f"{name} has no open ports.")
            continue
        for port_report in sorted(report.port_reports, key=lambda r: r.open_port):
            lines.extend(_port_lines(port_report))
    return lines


def _port_lines(report: PortReport) -> List[str]:
    head = str(report.open_port)
    if report.skipped:
        return [f"{head} session=none application=unknown"]

    apps = ",".join(a.label for a in report.applications) or "unknown"
    parts = [
        head,
        f"session={report.session.label}",
        f"presentation={report.presentation.label if report.presentation else 'none'}",
        f"application={apps}",
    ]
    for result in [report.session, report.presentation, *report.applications]:
        if result is None:
            continue
        parts.extend(f"{k}={v}" for k, v in sorted(result.properties.items()))

    lines = [" ".join(parts)]
    for finding in report.findings:
        lines.append(f"  [{finding.status.value}] {finding.check}: {finding.evidence}")
    return lines


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def _layer_dict(result: Optional[LayerResult]) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return {
        "layer": result.layer.value,
        "protocol": result.protocol,
        "detected": result.detected,
        "version": result.version,
        "properties": dict(result.properties),
        "findings": [
            {"check": f.check, "status": f.status.value, "evidence": f.evidence}
            for f in result.findings
        ],
        "error": result.error,
    }


def report_to_dict(report: TargetReport) -> Dict[str, Any]:
    return {
        "host": report.target.host,
        "ip": report.target.ip,
        "error": report.error,
        "probes_attempted": report.probes_attempted,
        "duration_seconds": report.duration_seconds,
        "open_ports": {
            "tcp": report.ports_for(Transport.TCP),
            "udp": report.ports_for(Transport.UDP),
        },
        "services": [
            {
                "port": r.open_port.port,
                "transport": r.open_port.transport.value,
                "session": _layer_dict(r.session),
                "presentation": _layer_dict(r.presentation),
                "applications": [_layer_dict(a) for a in r.applications],
                "attempts": [_layer_dict(a) for a in r.attempts],
                "duration_seconds": r.duration_seconds,
            }
            for r in sorted(report.port_reports, key=lambda r: r.open_port)
        ],
    }


def render_json(reports: Sequence[TargetReport]) -> str:
    return json.dumps(
        {"targets": [report_to_dict(r) for r in reports]},
        indent=2,
        sort_keys=False,
        default=str,
    )
