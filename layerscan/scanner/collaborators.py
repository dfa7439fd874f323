# layerscan/scanner/collaborators.py
"""
Vulnerability corroboration probes.

After an application plugin has identified a service, it may ask a
collaborator to confirm whether an unauthenticated administrative
operation actually succeeds. Collaborators are pluggable and optional:

    - missing probe         → Finding(status=uncorroborated)
    - probe raises / fails  → Finding(status=uncorroborated, evidence=reason)
    - probe answers         → Finding(status=vulnerable | not_vulnerable)

A collaborator failure is never fatal to the plugin that asked.

Implementations:
    EtcdAnonymousReadProbe     keyspace read through the etcd v3 HTTP gateway (httpx)
    EtcdctlProbe               the same check through an installed etcdctl binary
    KubeletAnonymousAccessProbe  pod / node listing on the kubelet companion ports (httpx)
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx

from layerscan.errors import CollaboratorError
from layerscan.scanner.base import Finding, FindingStatus

logger = logging.getLogger(__name__)

KUBELET_SECURE_PORT = 10250
KUBELET_READONLY_PORT = 10255

# base64("\x00"): key and range_end both \x00 selects the whole keyspace
ETCD_WHOLE_KEYSPACE = "AA=="

AUTH_DENIED_MARKERS = (
    "user name is empty",
    "permission denied",
    "authentication",
    "authorization failed",
    "invalid auth token",
)


@dataclass(frozen=True)
class ServiceContext:
    """What the plugin knows about the service it wants corroborated."""
    host: str
    port: int
    protocol: str
    tls: bool = False
    version: Optional[str] = None

    def base_url(self, port: Optional[int] = None, tls: Optional[bool] = None) -> str:
        scheme = "https" if (self.tls if tls is None else tls) else "http"
        return f"{scheme}://{self.host}:{port or self.port}"


@dataclass(frozen=True)
class ProbeOutcome:
    vulnerable: bool
    evidence: str


class VulnerabilityProbe(ABC):
    """
    Abstract corroboration probe.

    probe() returns a ProbeOutcome when it got a definite answer and
    raises CollaboratorError when it could not find out.
    """

    check: str = ""

    @abstractmethod
    def probe(self, ctx: ServiceContext) -> ProbeOutcome:
        ...


def corroborate(probe: Optional[VulnerabilityProbe], ctx: ServiceContext, check: str) -> Finding:
    """Run probe for ctx and turn the outcome into a Finding. Never raises."""
    if probe is None:
        return Finding(check, FindingStatus.UNCORROBORATED, "no corroboration probe configured")

    try:
        outcome = probe.probe(ctx)
    except CollaboratorError as e:
        logger.warning(f"Could not corroborate {check} on {ctx.host}:{ctx.port}: {e}")
        return Finding(check, FindingStatus.UNCORROBORATED, f"could not corroborate: {e}")
    except Exception as e:
        logger.warning(
            f"Corroboration probe {type(probe).__name__} crashed on {ctx.host}:{ctx.port}: "
            f"{type(e).__name__}: {e}"
        )
        return Finding(check, FindingStatus.UNCORROBORATED,
                       f"could not corroborate: {type(e).__name__}: {e}")

    status = FindingStatus.VULNERABLE if outcome.vulnerable else FindingStatus.NOT_VULNERABLE
    if outcome.vulnerable:
        logger.info(f"{check} confirmed on {ctx.host}:{ctx.port}: {outcome.evidence}")
    return Finding(check, status, outcome.evidence)


def _is_auth_denial(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in AUTH_DENIED_MARKERS)


# ---------------------------------------------------------------------------
# etcd
# ---------------------------------------------------------------------------

class EtcdAnonymousReadProbe(VulnerabilityProbe):
    """
    POST /v3/kv/range for the whole keyspace, keys only, limit 1.

    A 200 carrying a response header means anonymous reads work.
    """

    check = "etcd-anonymous-read"

    def __init__(self, timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    def probe(self, ctx: ServiceContext) -> ProbeOutcome:
        url = f"{ctx.base_url()}/v3/kv/range"
        payload = {
            "key": ETCD_WHOLE_KEYSPACE,
            "range_end": ETCD_WHOLE_KEYSPACE,
            "keys_only": True,
            "limit": 1,
        }
        try:
            with httpx.Client(timeout=self.timeout, verify=False,
                              transport=self._transport) as client:
                resp = client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise CollaboratorError(f"etcd gateway request failed: {type(e).__name__}: {e}") from e

        if resp.status_code in (401, 403) or _is_auth_denial(resp.text):
            return ProbeOutcome(False, f"etcd on {ctx.host}:{ctx.port} requires authentication")
        if resp.status_code != 200:
            raise CollaboratorError(f"etcd gateway answered HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise CollaboratorError("etcd gateway returned non-JSON body") from e

        if not isinstance(data, dict) or "header" not in data:
            raise CollaboratorError("etcd gateway reply has no response header")

        count = data.get("count", "0")
        return ProbeOutcome(
            True,
            f"etcd keyspace on {ctx.host}:{ctx.port} readable without authentication "
            f"({count} key(s))",
        )


class EtcdctlProbe(VulnerabilityProbe):
    """
    `etcdctl get / --prefix --keys-only` against the endpoint.

    Keys printed on a clean exit mean anonymous reads work. A clean exit
    with no keys, or an authorization failure, counts as not vulnerable.
    Any other failure leaves the check uncorroborated.
    """

    check = "etcd-anonymous-read"

    def __init__(self, binary: str = "etcdctl", timeout: float = 10.0):
        self.binary = binary
        self.timeout = timeout

    def probe(self, ctx: ServiceContext) -> ProbeOutcome:
        binary = shutil.which(self.binary)
        if not binary:
            raise CollaboratorError(f"{self.binary} not found on PATH")

        cmd: List[str] = [binary, f"--endpoints={ctx.base_url()}", "get", "/", "--prefix", "--keys-only"]
        if ctx.tls:
            cmd.append("--insecure-skip-tls-verify")

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, "ETCDCTL_API": "3"},
            )
        except subprocess.TimeoutExpired as e:
            raise CollaboratorError(f"etcdctl timed out after {self.timeout}s") from e
        except OSError as e:
            raise CollaboratorError(f"etcdctl could not run: {e}") from e

        output = f"{proc.stdout}\n{proc.stderr}".strip()
        if proc.returncode != 0:
            if _is_auth_denial(output):
                return ProbeOutcome(False, f"etcd on {ctx.host}:{ctx.port} requires authentication")
            raise CollaboratorError(f"etcdctl exited with code {proc.returncode}: {output[:200]}")

        keys = [line for line in proc.stdout.splitlines() if line.strip()]
        if not keys:
            return ProbeOutcome(False, f"etcdctl read no keys on {ctx.host}:{ctx.port}")
        return ProbeOutcome(
            True,
            f"etcdctl listed {len(keys)} key(s) on {ctx.host}:{ctx.port} without authentication",
        )


# ---------------------------------------------------------------------------
# kubelet
# ---------------------------------------------------------------------------

class KubeletAnonymousAccessProbe(VulnerabilityProbe):
    """
    Try anonymous pod and node listings on the kubelet companion ports.

    The secure port (10250) is spoken over TLS and asked for /pods; every
    other port is the read-only API over plain HTTP and is asked for
    /api/v1/nodes and /api/v1/pods. Any listing that comes back 200 with
    content is evidence of unauthenticated access; 401/403 everywhere
    means access is locked down; no port answering at all means we could
    not tell.
    """

    check = "kubelet-anonymous-access"

    SECURE_PATHS = ("/pods",)
    READONLY_PATHS = ("/api/v1/nodes", "/api/v1/pods")

    def __init__(
        self,
        ports: Sequence[int] = (KUBELET_SECURE_PORT, KUBELET_READONLY_PORT),
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.ports = tuple(ports)
        self.timeout = timeout
        self._transport = transport

    def listing_urls(self, ctx: ServiceContext, port: int) -> List[str]:
        secure = port == KUBELET_SECURE_PORT
        base = ctx.base_url(port=port, tls=secure)
        paths = self.SECURE_PATHS if secure else self.READONLY_PATHS
        return [f"{base}{path}" for path in paths]

    def probe(self, ctx: ServiceContext) -> ProbeOutcome:
        exposed: List[str] = []
        denied: List[str] = []
        errors: List[str] = []

        with httpx.Client(timeout=self.timeout, verify=False,
                          transport=self._transport) as client:
            for port in self.ports:
                for url in self.listing_urls(ctx, port):
                    try:
                        resp = client.get(url)
                    except httpx.HTTPError as e:
                        errors.append(f"{url}: {type(e).__name__}")
                        break  # port unreachable, skip its other paths
                    if resp.status_code == 200 and resp.content.strip():
                        exposed.append(url)
                    elif resp.status_code in (401, 403):
                        denied.append(url)
                    else:
                        errors.append(f"{url}: HTTP {resp.status_code}")

        if exposed:
            return ProbeOutcome(True, "anonymous listing allowed: " + ", ".join(exposed))
        if denied:
            return ProbeOutcome(False, "listing requires authentication: " + ", ".join(denied))
        raise CollaboratorError("no kubelet companion port answered: " + "; ".join(errors))
