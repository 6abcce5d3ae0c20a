"""Tests for natural language translation."""

import asyncio

import pytest

from commandcenter.errors import ExternalServiceError
from commandcenter.models import (
    ExternalTranslation,
    TranslationResponse,
    TranslationSource,
)
from commandcenter.phrases import PHRASES, PhraseRule, PhraseTable, _single
from commandcenter.translator import Translator, normalize

from conftest import FakeReasoning


def external(command, confidence=0.9, sub_commands=None, requires_confirmation=False):
    return TranslationResponse(
        translation=ExternalTranslation(
            command=command,
            sub_commands=sub_commands or [],
            explanation="Lists the backup directory",
            requires_confirmation=requires_confirmation,
        ),
        confidence=confidence,
        warnings=["Backups may be large"],
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("rule", PHRASES, ids=lambda rule: rule.phrase)
async def test_every_phrase_matches_exactly(rule):
    result = await Translator().translate(rule.phrase)

    assert result.source == TranslationSource.EXACT_MATCH
    assert result.confidence == 1.0
    assert result.steps == list(rule.steps)


@pytest.mark.asyncio
async def test_exact_match_is_case_and_space_insensitive():
    result = await Translator().translate("  System   STATUS ")

    assert result.source == TranslationSource.EXACT_MATCH
    assert result.command == "uptime && free -h && df -h"
    assert [step.label for step in result.steps] == ["Uptime", "Memory", "Storage"]


@pytest.mark.asyncio
async def test_memory_translates_to_free():
    result = await Translator().translate("memory")

    assert result.command == "free -h"


@pytest.mark.asyncio
async def test_passthrough_keeps_input_verbatim():
    result = await Translator().translate("ls -la /srv/Media")

    assert result.source == TranslationSource.PASSTHROUGH
    assert result.confidence == 0.9
    assert result.command == "ls -la /srv/Media"


@pytest.mark.asyncio
async def test_compound_single_rule_covering_all_parts():
    result = await Translator().translate("docker, ps")

    assert result.source == TranslationSource.COMPOUND_MATCH
    assert result.confidence == 0.9
    assert result.command.startswith("docker ps -a")


@pytest.mark.asyncio
async def test_compound_resolves_each_part():
    result = await Translator().translate("memory and disk space")

    assert result.source == TranslationSource.COMPOUND_MATCH
    assert result.confidence == 0.85
    assert result.command == "free -h && df -h"
    assert [step.label for step in result.steps] == ["memory", "disk space"]
    assert all(not step.check for step in result.steps)


@pytest.mark.asyncio
async def test_compound_reports_unresolved_parts():
    result = await Translator().translate("uptime then xyzzy")

    assert result.source == TranslationSource.COMPOUND_MATCH
    assert result.command == "uptime"
    assert "Could not resolve 'xyzzy', skipped" in result.warnings


@pytest.mark.asyncio
async def test_partial_match_warns():
    result = await Translator().translate("how hot is the cpu")

    assert result.source == TranslationSource.PARTIAL_MATCH
    assert result.confidence == 0.6
    assert result.command == "vcgencmd measure_temp"
    assert result.warnings == ["Partial match: 'cpu' matched phrase 'cpu temp'"]


@pytest.mark.asyncio
async def test_partial_match_prefers_first_declared_rule():
    table = PhraseTable([
        PhraseRule("disk one", _single("echo one")),
        PhraseRule("disk two", _single("echo two")),
    ])

    result = await Translator(table=table).translate("which disk")

    assert result.command == "echo one"


@pytest.mark.asyncio
async def test_unknown_input_falls_back():
    result = await Translator().translate("xyzzy")

    assert result.source == TranslationSource.FALLBACK
    assert result.confidence == 0.0
    assert result.warnings == ["Input not recognized"]
    assert result.command.startswith("printf")
    assert "Unknown command" in result.command
    assert "Available commands" in result.command


@pytest.mark.asyncio
async def test_empty_input_falls_back():
    reasoning = FakeReasoning(translation=external("ls"))

    result = await Translator(reasoning=reasoning).translate("   ")

    assert result.source == TranslationSource.FALLBACK
    assert reasoning.translate_calls == 0


@pytest.mark.asyncio
async def test_external_translation_accepted():
    reasoning = FakeReasoning(translation=external("ls -lah /srv/backup"))

    result = await Translator(reasoning=reasoning).translate("backup photos")

    assert result.source == TranslationSource.EXTERNAL_SERVICE
    assert result.command == "ls -lah /srv/backup"
    assert result.confidence == 0.9
    assert result.explanation == "Lists the backup directory"
    assert result.warnings == ["Backups may be large"]


@pytest.mark.asyncio
async def test_external_sub_commands_become_steps():
    reasoning = FakeReasoning(translation=external(
        "du -sh /srv && ls /srv",
        sub_commands=["du -sh /srv", "ls /srv"],
        requires_confirmation=True,
    ))

    result = await Translator(reasoning=reasoning).translate("backup photos")

    assert [step.label for step in result.steps] == ["Step 1", "Step 2"]
    assert result.requires_confirmation
    assert "Command requires confirmation" in result.warnings


@pytest.mark.asyncio
async def test_low_confidence_external_translation_rejected():
    reasoning = FakeReasoning(translation=external("rm -rf /", confidence=0.5))

    result = await Translator(reasoning=reasoning).translate("backup photos")

    assert result.source == TranslationSource.FALLBACK
    assert reasoning.translate_calls == 1


@pytest.mark.asyncio
async def test_external_failure_falls_back():
    reasoning = FakeReasoning(translation=ExternalServiceError("down"))

    result = await Translator(reasoning=reasoning).translate("backup photos")

    assert result.source == TranslationSource.FALLBACK


@pytest.mark.asyncio
async def test_external_timeout_falls_back():
    class SlowReasoning(FakeReasoning):
        async def translate(self, *args, **kwargs):
            await asyncio.sleep(10)

    result = await Translator(reasoning=SlowReasoning(), timeout=0.05).translate("backup photos")

    assert result.source == TranslationSource.FALLBACK


@pytest.mark.asyncio
async def test_rules_win_over_external_service():
    reasoning = FakeReasoning(translation=external("echo external"))

    result = await Translator(reasoning=reasoning).translate("uptime")

    assert result.source == TranslationSource.EXACT_MATCH
    assert reasoning.translate_calls == 0


def test_normalize():
    assert normalize("  Disk   SPACE\n") == "disk space"
