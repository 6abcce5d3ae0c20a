"""Tests for command output analysis."""

import asyncio

import pytest

from commandcenter.analyzer import (
    Analyzer,
    analyze_output,
    check_filesystems,
    check_load,
    check_processes,
    check_raid,
    load_severity,
)
from commandcenter.errors import ExternalServiceError
from commandcenter.models import AnalysisResponse, ExternalAnalysis

from conftest import FakeReasoning

UPTIME = " 10:02:11 up 12 days,  3:04,  2 users,  load average: 0.20, 0.50, 0.60\n"

DF = """Filesystem      Size  Used Avail Use% Mounted on
/dev/root        29G   12G   16G  43% /
/dev/md0        3.6T  3.1T  330G  91% /srv/data
/dev/sda1       253M   190M  63M  75% /boot
"""

MDSTAT_DEGRADED = """Personalities : [raid1]
md0 : active raid1 sdb1[1] sda1[0](F)
      3906886464 blocks super 1.2 [2/1] [U_]

unused devices: <none>
"""

MDSTAT_HEALTHY = """Personalities : [raid1]
md0 : active raid1 sdb1[1] sda1[0]
      3906886464 blocks super 1.2 [2/2] [UU]
"""

PS = """USER       PID %CPU %MEM    VSZ   RSS TTY      STAT START   TIME COMMAND
root       812 45.0 20.1 123456 7890 ?        Ssl  Jan01  10:00 /usr/bin/dockerd -H fd://
pi        1201 30.5 35.0  99999 5555 ?        Sl   Jan01   5:00 python3 server.py
pi        1300 10.0 30.0  11111 2222 pts/0    R+   10:00   0:00 ps aux
"""


def external_analysis(summary="Looks fine"):
    return AnalysisResponse(
        analysis=ExternalAnalysis(summary=summary, concerns=["c"], recommendations=["r"], details="d"),
        confidence=0.9,
    )


@pytest.mark.parametrize("load, severity", [
    (0.2, "minimal"),
    (0.7, "normal"),
    (1.5, "moderate"),
    (2.0, "high"),
    (3.9, "high"),
    (4.0, "critical"),
])
def test_load_severity(load, severity):
    assert load_severity(load) == severity


def test_load_trend_decreasing():
    finding = check_load(UPTIME)

    assert finding.metrics["trend"] == "decreasing"
    assert finding.metrics["load1"] == 0.2
    assert finding.concerns == []


def test_high_load_is_a_concern():
    finding = check_load("load average: 2.50, 1.00, 0.80")

    assert finding.metrics["trend"] == "increasing"
    assert finding.metrics["severity"] == "high"
    assert finding.concerns


def test_filesystem_thresholds():
    finding = check_filesystems(DF)

    assert len(finding.metrics["filesystems"]) == 3
    assert finding.concerns == ["Filesystem /srv/data (/dev/md0) is 91% full"]
    assert finding.warnings == ["Filesystem /boot (/dev/sda1) is filling up: 75%"]
    assert "fullest is /srv/data at 91%" in finding.summary


def test_filesystems_need_a_df_header():
    assert check_filesystems("/dev/root 29G 12G 16G 43% /") is None


def test_degraded_raid():
    finding = check_raid(MDSTAT_DEGRADED)

    assert finding.metrics["raid"][0]["marker"] == "U_"
    assert finding.concerns == ["RAID array md0 is degraded (status U_)"]


def test_healthy_raid():
    finding = check_raid(MDSTAT_HEALTHY)

    assert finding.concerns == []
    assert finding.summary == "All 1 RAID arrays healthy"


def test_process_usage():
    finding = check_processes(PS)

    assert finding.metrics["total_cpu"] == pytest.approx(85.5)
    assert finding.metrics["total_mem"] == pytest.approx(85.1)
    assert len(finding.concerns) == 2
    assert finding.metrics["top_processes"][0]["command"] == "/usr/bin/dockerd -H fd://"
    assert finding.metrics["top_processes"][0]["pid"] == "812"


def test_rules_combine_findings():
    result = analyze_output(UPTIME + DF)

    assert result.source == "rules"
    assert result.confidence == 0.95
    assert result.metrics["trend"] == "decreasing"
    assert "filesystems" in result.metrics
    assert len(result.concerns) == 1


def test_unrecognized_output_gets_generic_result():
    result = analyze_output("hello world\n")

    assert result.summary == "Command completed with no immediate concerns"
    assert result.confidence == 0.8
    assert result.concerns == []


@pytest.mark.asyncio
async def test_without_reasoning_uses_rules():
    result = await Analyzer().analyze("uptime", "uptime", UPTIME)

    assert result.source == "rules"
    assert result.metrics["trend"] == "decreasing"


@pytest.mark.asyncio
async def test_external_analysis_preferred():
    reasoning = FakeReasoning(analysis=external_analysis("All good"))

    result = await Analyzer(reasoning).analyze("uptime", "uptime", UPTIME)

    assert result.source == "external"
    assert result.summary == "All good"
    assert result.confidence == 0.9


@pytest.mark.asyncio
async def test_external_failure_falls_back_after_one_attempt():
    reasoning = FakeReasoning(analysis=[ExternalServiceError("down"), external_analysis()])

    result = await Analyzer(reasoning, max_attempts=2).analyze("uptime", "uptime", UPTIME)

    assert result.source == "rules"
    assert reasoning.analyze_calls == 1


@pytest.mark.asyncio
async def test_test_calls_retry():
    reasoning = FakeReasoning(analysis=[ExternalServiceError("down"), external_analysis("Second try")])

    result = await Analyzer(reasoning, max_attempts=2).analyze("uptime", "uptime", UPTIME, is_test=True)

    assert result.source == "external"
    assert result.summary == "Second try"
    assert reasoning.analyze_calls == 2


@pytest.mark.asyncio
async def test_slow_external_analysis_times_out():
    class SlowReasoning(FakeReasoning):
        async def analyze(self, *args, **kwargs):
            await asyncio.sleep(10)

    result = await Analyzer(SlowReasoning(), base_timeout=0.05).analyze("df", "df -h", DF)

    assert result.source == "rules"
    assert result.concerns


@pytest.mark.asyncio
async def test_unexpected_reasoning_error_never_escapes():
    reasoning = FakeReasoning(analysis=ValueError("bad"))

    result = await Analyzer(reasoning).analyze("df", "df -h", DF)

    assert result.source == "rules"
