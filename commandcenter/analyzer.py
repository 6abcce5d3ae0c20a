"""Post-execution analysis of command output."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from .errors import ExternalServiceError
from .models import AnalysisResult
from .reasoning import ReasoningClient

logger = structlog.get_logger(__name__)

RULE_CONFIDENCE = 0.95
GENERIC_CONFIDENCE = 0.8

DISK_CONCERN_PERCENT = 80.0
DISK_WARNING_PERCENT = 70.0
PROCESS_CONCERN_PERCENT = 80.0
TOP_PROCESS_COUNT = 5

_LOAD_RE = re.compile(r"load averages?:\s*([\d.]+),?\s+([\d.]+),?\s+([\d.]+)")
_DF_ROW_RE = re.compile(r"^(\S+)\s+\S+\s+\S+\s+\S+\s+(\d+)%\s+(\S.*)$")
_MD_ARRAY_RE = re.compile(r"^(md\d+)\s*:\s*(\S+)")
_MD_STATUS_RE = re.compile(r"\[(\d+)/(\d+)\]\s*\[([U_]+)\]")


@dataclass
class Finding:
    """What one rule concluded about the output."""
    summary: str
    concerns: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    details: List[str] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)


def load_severity(load: float) -> str:
    if load < 0.7:
        return "minimal"
    if load < 1:
        return "normal"
    if load < 2:
        return "moderate"
    if load < 4:
        return "high"
    return "critical"


def check_load(output: str) -> Optional[Finding]:
    """Load-average lines, as printed by uptime or top."""
    match = _LOAD_RE.search(output)
    if not match:
        return None
    load1, load5, load15 = (float(value) for value in match.groups())
    if load1 > load5:
        trend = "increasing"
    elif load1 < load5:
        trend = "decreasing"
    else:
        trend = "stable"
    severity = load_severity(load1)

    finding = Finding(
        summary=f"System load is {severity} ({load1:.2f}) and {trend}",
        details=[f"Load average: {load1:.2f} (1m), {load5:.2f} (5m), {load15:.2f} (15m); trend: {trend}"],
        metrics={
            "load1": load1,
            "load5": load5,
            "load15": load15,
            "trend": trend,
            "severity": severity,
        },
    )
    if severity in ("high", "critical"):
        finding.concerns.append(f"System load is {severity}: {load1:.2f} over the last minute")
        finding.recommendations.append("Check the top processes for runaway jobs")
    elif severity == "moderate" and trend == "increasing":
        finding.recommendations.append("Load is rising; keep monitoring")
    return finding


def check_filesystems(output: str) -> Optional[Finding]:
    """A `df` table."""
    lines = output.splitlines()
    if not any(line.startswith("Filesystem") and ("Use%" in line or "Capacity" in line) for line in lines):
        return None

    filesystems = []
    finding = Finding(summary="")
    for line in lines:
        match = _DF_ROW_RE.match(line.strip())
        if not match:
            continue
        name, percent, mount = match.group(1), float(match.group(2)), match.group(3).strip()
        filesystems.append({"filesystem": name, "mount": mount, "percent": percent})
        if percent > DISK_CONCERN_PERCENT:
            finding.concerns.append(f"Filesystem {mount} ({name}) is {percent:.0f}% full")
        elif percent > DISK_WARNING_PERCENT:
            finding.warnings.append(f"Filesystem {mount} ({name}) is filling up: {percent:.0f}%")

    if not filesystems:
        return None
    fullest = max(filesystems, key=lambda fs: fs["percent"])
    finding.summary = (
        f"{len(filesystems)} filesystems checked, fullest is {fullest['mount']} at {fullest['percent']:.0f}%"
    )
    finding.details = [f"{fs['mount']}: {fs['percent']:.0f}% used" for fs in filesystems]
    finding.metrics["filesystems"] = filesystems
    if finding.concerns:
        finding.recommendations.append("Free up space or expand the affected filesystems")
    return finding


def check_raid(output: str) -> Optional[Finding]:
    """/proc/mdstat contents."""
    lines = output.splitlines()
    arrays = []
    for index, line in enumerate(lines):
        match = _MD_ARRAY_RE.match(line.strip())
        if not match:
            continue
        name, state = match.groups()
        marker = None
        for following in lines[index + 1:index + 3]:
            status = _MD_STATUS_RE.search(following)
            if status:
                marker = status.group(3)
                break
        healthy = state == "active" and marker is not None and "_" not in marker
        arrays.append({"array": name, "state": state, "marker": marker, "healthy": healthy})

    if not arrays:
        return None
    finding = Finding(summary="", metrics={"raid": arrays})
    for array in arrays:
        if array["healthy"]:
            finding.details.append(f"{array['array']}: all devices up [{array['marker']}]")
        else:
            finding.concerns.append(
                f"RAID array {array['array']} is degraded (status {array['marker'] or 'unknown'})"
            )
            finding.details.append(f"{array['array']}: degraded")
    degraded = [a for a in arrays if not a["healthy"]]
    if degraded:
        finding.summary = f"{len(degraded)} of {len(arrays)} RAID arrays degraded"
        finding.recommendations.append("Inspect the array with 'mdadm --detail' and replace failed disks")
    else:
        finding.summary = f"All {len(arrays)} RAID arrays healthy"
    return finding


def check_processes(output: str) -> Optional[Finding]:
    """A `ps aux` style listing."""
    lines = output.splitlines()
    header_index = next(
        (i for i, line in enumerate(lines) if "%CPU" in line and "%MEM" in line),
        None,
    )
    if header_index is None:
        return None
    header = lines[header_index].split()
    cpu_col, mem_col = header.index("%CPU"), header.index("%MEM")
    pid_col = header.index("PID") if "PID" in header else None

    processes = []
    for line in lines[header_index + 1:]:
        columns = line.split(None, len(header) - 1)
        if len(columns) < len(header):
            continue
        try:
            cpu, mem = float(columns[cpu_col]), float(columns[mem_col])
        except ValueError:
            continue
        processes.append({
            "pid": columns[pid_col] if pid_col is not None else "",
            "user": columns[0],
            "cpu": cpu,
            "mem": mem,
            "command": columns[-1],
        })
    if not processes:
        return None

    total_cpu = sum(p["cpu"] for p in processes)
    total_mem = sum(p["mem"] for p in processes)
    top = sorted(processes, key=lambda p: p["cpu"], reverse=True)[:TOP_PROCESS_COUNT]
    finding = Finding(
        summary=f"{len(processes)} processes using {total_cpu:.1f}% CPU and {total_mem:.1f}% memory",
        details=[f"{p['command']} (pid {p['pid']}): {p['cpu']:.1f}% CPU, {p['mem']:.1f}% MEM" for p in top],
        metrics={"total_cpu": total_cpu, "total_mem": total_mem, "top_processes": top},
    )
    if total_cpu > PROCESS_CONCERN_PERCENT:
        finding.concerns.append(f"Aggregate CPU usage is high: {total_cpu:.1f}%")
    if total_mem > PROCESS_CONCERN_PERCENT:
        finding.concerns.append(f"Aggregate memory usage is high: {total_mem:.1f}%")
    if finding.concerns:
        finding.recommendations.append(f"Review the top process: {top[0]['command']}")
    return finding


RULES = [check_load, check_filesystems, check_raid, check_processes]


def analyze_output(output: str) -> AnalysisResult:
    """Deterministic, rule-based analysis."""
    findings = [finding for finding in (rule(output) for rule in RULES) if finding is not None]
    if not findings:
        return AnalysisResult(
            summary="Command completed with no immediate concerns",
            details="Output did not match any known command pattern",
            confidence=GENERIC_CONFIDENCE,
            source="rules",
        )

    metrics: Dict[str, Any] = {}
    for finding in findings:
        metrics.update(finding.metrics)
    return AnalysisResult(
        summary="; ".join(f.summary for f in findings),
        concerns=[c for f in findings for c in f.concerns],
        warnings=[w for f in findings for w in f.warnings],
        recommendations=[r for f in findings for r in f.recommendations],
        details="\n".join(d for f in findings for d in f.details),
        confidence=RULE_CONFIDENCE,
        source="rules",
        metrics=metrics,
    )


class Analyzer:
    """Interprets command output, preferring the reasoning service."""

    def __init__(
        self,
        reasoning: Optional[ReasoningClient] = None,
        base_timeout: float = 10.0,
        max_attempts: int = 2,
    ):
        self.reasoning = reasoning
        self.base_timeout = base_timeout
        self.max_attempts = max_attempts

    async def analyze(
        self,
        original_input: str,
        command: str,
        output: str,
        is_test: bool = False,
    ) -> AnalysisResult:
        """Best-effort analysis; never raises."""
        if self.reasoning is not None:
            try:
                return await self._analyze_external(original_input, command, output, is_test)
            except ExternalServiceError as e:
                logger.warning("Reasoning analysis unavailable, using rules", error=str(e))
            except Exception as e:
                logger.error("Reasoning analysis failed unexpectedly, using rules", error=str(e))
        return analyze_output(output)

    async def _analyze_external(
        self,
        original_input: str,
        command: str,
        output: str,
        is_test: bool,
    ) -> AnalysisResult:
        last_error: Optional[BaseException] = None
        for attempt in range(self.max_attempts):
            timeout = self.base_timeout * (2 ** attempt)
            try:
                response = await asyncio.wait_for(
                    self.reasoning.analyze(original_input, command, output, timeout=timeout),
                    timeout=timeout,
                )
            except (ExternalServiceError, asyncio.TimeoutError) as e:
                last_error = e
                logger.info("Analysis attempt failed", attempt=attempt + 1, timeout=timeout, error=str(e))
                if not is_test:
                    # Only test calls spend the retry budget
                    break
                continue
            analysis = response.analysis
            return AnalysisResult(
                summary=analysis.summary,
                concerns=analysis.concerns,
                recommendations=analysis.recommendations,
                details=analysis.details,
                confidence=max(0.0, min(1.0, response.confidence)),
                source="external",
            )
        raise ExternalServiceError(f"Analysis failed: {last_error}")
