# layerscan/scanner/orchestrator.py
"""
Discovery orchestrator: drives open ports through the layer registries.

Per open port (one pipeline run):

    START → SESSION ──(none detected)──────────────────────────→ DONE (skipped)
                  └─→ PRESENTATION ─→ APPLICATION(presentation) → DONE
                                   └─→ APPLICATION(None)        → DONE

    1. Session: plugins matching the port's transport, in registration
       order, under the session policy (first-match by default). No
       detection ends the run; nothing above the session layer runs.
    2. Presentation: first-match by default. No detection is not fatal:
       application discovery still runs on the raw session handle.
    3. Application: run-all by default. Every matching plugin runs even
       after an earlier one detected; verdicts are accumulated.

The session handle is owned by exactly one run and is released on every
exit path. There are no retries: a failed probe is the final verdict of
that plugin for that run.

Scanner sits on top and fans out:
    one task per target → PortProber → one task per open port → orchestrator
and waits for all of a target's tasks before returning its report.

Usage:
    from layerscan.scanner import Scanner

    scanner = Scanner(config)
    reports = scanner.scan(targets, ports, transports=[Transport.TCP])
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence

from layerscan.config import ScanConfig
from layerscan.scanner.base import (
    Layer,
    LayerResult,
    MatchPolicy,
    OpenPort,
    PortReport,
    SessionLayerResult,
    TargetReport,
    Transport,
)
from layerscan.scanner.prober import PortProber
from layerscan.scanner.registry import DiscoveryRegistry, PluginEntry, default_registry
from layerscan.scanner.session import SessionHandle
from layerscan.targets import PortSet, ScanTarget

logger = logging.getLogger(__name__)


class DiscoveryOrchestrator:
    """
    Runs the session → presentation → application pipeline for open ports.

    The registry is frozen here: from this point on it is shared,
    read-only, by every concurrent pipeline run.
    """

    def __init__(self, registry: DiscoveryRegistry, config: Optional[ScanConfig] = None):
        self.registry = registry.freeze()
        self.config = config or ScanConfig()

    # -------------------------------------------------------------------
    # One port
    # -------------------------------------------------------------------

    def discover(self, open_port: OpenPort) -> PortReport:
        start = time.monotonic()
        report = PortReport(open_port=open_port)
        try:
            self._run_pipeline(open_port, report)
        except Exception:
            # Plugins never raise; only orchestrator bugs land here
            logger.exception(f"Discovery pipeline crashed for {open_port}")
        report.duration_seconds = round(time.monotonic() - start, 3)
        return report

    def _run_pipeline(self, open_port: OpenPort, report: PortReport) -> None:
        transport = open_port.transport

        # --- SESSION ---
        session_results = self._evaluate(
            Layer.SESSION, transport,
            lambda entry: entry.plugin.run(open_port.ip, open_port.port),
        )
        report.attempts.extend(session_results)
        winner = _first_detected(session_results)

        for result in session_results:
            if isinstance(result, SessionLayerResult) and result is not winner and result.session:
                result.session.close()

        if winner is None or not isinstance(winner, SessionLayerResult) or winner.session is None:
            logger.info(f"{open_port}: no session protocol detected, skipping")
            return

        report.session = winner
        handle: SessionHandle = winner.session

        with handle:
            # --- PRESENTATION ---
            presentation_results = self._evaluate(
                Layer.PRESENTATION, transport,
                lambda entry: entry.plugin.run(handle),
            )
            report.attempts.extend(presentation_results)
            presentation = _first_detected(presentation_results)
            report.presentation = presentation
            if presentation is None:
                logger.debug(f"{open_port}: no presentation protocol, continuing on raw session")

            # --- APPLICATION ---
            application_results = self._evaluate(
                Layer.APPLICATION, transport,
                lambda entry: entry.plugin.run(handle, presentation),
            )
            report.attempts.extend(application_results)
            report.applications = [r for r in application_results if r.detected]

        labels = ", ".join(r.label for r in report.applications) or "unknown"
        logger.info(
            f"{open_port}: session={winner.protocol} "
            f"presentation={presentation.label if presentation else 'none'} "
            f"application={labels}"
        )

    def _evaluate(
        self,
        layer: Layer,
        transport: Transport,
        call: Callable[[PluginEntry], LayerResult],
    ) -> List[LayerResult]:
        """Run the layer's matching plugins under its policy; return every verdict produced."""
        policy = self.registry.policy(layer)
        results: List[LayerResult] = []
        for entry in self.registry.entries(layer, transport):
            result = call(entry)
            results.append(result)
            if result.detected and policy == MatchPolicy.FIRST:
                break
        return results

    # -------------------------------------------------------------------
    # Many ports
    # -------------------------------------------------------------------

    def discover_all(self, open_ports: Sequence[OpenPort]) -> List[PortReport]:
        """One pipeline run per open port, in parallel. Reports in completion order."""
        if not open_ports:
            return []
        workers = min(len(open_ports), self.config.discovery_workers)
        reports: List[PortReport] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="discover") as executor:
            futures = [executor.submit(self.discover, p) for p in open_ports]
            for future in as_completed(futures):
                reports.append(future.result())
        return reports


def _first_detected(results: Sequence[LayerResult]) -> Optional[LayerResult]:
    for result in results:
        if result.detected:
            return result
    return None


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------

class Scanner:
    """
    Full scan of one or more targets: probe ports, then discover services.

    Args:
        config:    ScanConfig; validated on construction
        registry:  plugin registry; default_registry(config) when omitted
        prober:    PortProber; built from config when omitted
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        registry: Optional[DiscoveryRegistry] = None,
        prober: Optional[PortProber] = None,
    ):
        self.config = (config or ScanConfig()).validate()
        self.prober = prober or PortProber(
            timeout=self.config.connect_timeout,
            concurrency=self.config.concurrency,
        )
        self.orchestrator = DiscoveryOrchestrator(
            registry or default_registry(self.config), self.config
        )

    def scan_target(
        self,
        target: ScanTarget,
        ports: PortSet,
        transports: Sequence[Transport] = (Transport.TCP, Transport.UDP),
        discover: bool = True,
    ) -> TargetReport:
        start = time.monotonic()
        summary = self.prober.probe(target.ip, ports, transports)
        report = TargetReport(
            target=target,
            open_ports=list(summary.open_ports),
            probes_attempted=summary.attempted,
        )
        if discover:
            report.port_reports = self.orchestrator.discover_all(summary.open_ports)
        report.duration_seconds = round(time.monotonic() - start, 2)
        logger.info(
            f"Target {target.label} ({target.ip}) done: {len(report.open_ports)} open port(s) "
            f"in {report.duration_seconds}s"
        )
        return report

    def scan(
        self,
        targets: Sequence[ScanTarget],
        ports: PortSet,
        transports: Sequence[Transport] = (Transport.TCP, Transport.UDP),
        discover: bool = True,
    ) -> List[TargetReport]:
        """Scan every target concurrently. Reports come back in completion order."""
        if not targets:
            return []
        if len(targets) == 1:
            return [self.scan_target(targets[0], ports, transports, discover)]

        workers = min(len(targets), self.config.target_workers)
        reports: List[TargetReport] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="target") as executor:
            future_to_target = {
                executor.submit(self.scan_target, t, ports, transports, discover): t
                for t in targets
            }
            for future in as_completed(future_to_target):
                target = future_to_target[future]
                try:
                    reports.append(future.result())
                except Exception as e:
                    logger.exception(f"Scan of {target.label} failed")
                    reports.append(TargetReport(target=target, error=f"{type(e).__name__}: {e}"))
        return reports
