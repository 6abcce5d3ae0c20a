"""Natural language to command-plan translation."""

from __future__ import annotations

import asyncio
import re
import shlex
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .errors import ExternalServiceError
from .models import CommandStep, TranslationResult, TranslationSource
from .phrases import PhraseRule, PhraseTable
from .reasoning import ReasoningClient

logger = structlog.get_logger(__name__)

# Utilities whose invocations are run as typed
PASSTHROUGH_COMMANDS = (
    "docker", "ls", "pwd", "df", "free", "ip", "ss",
    "smartctl", "lsblk", "systemctl",
)

CONJUNCTIONS = re.compile(r"\s+(?:and|then|plus|&)\s+|\s*[,;]\s*")

# Words that would otherwise partially match almost any phrase
STOP_WORDS = {
    "a", "an", "the", "me", "my", "of", "on", "is", "it", "in", "to",
    "show", "what", "whats", "check", "get", "give", "please", "for",
}


def normalize(text: str) -> str:
    return " ".join(text.strip().lower().split())


class Translator:
    """Maps free-form input to an executable plan; never raises."""

    def __init__(
        self,
        table: Optional[PhraseTable] = None,
        reasoning: Optional[ReasoningClient] = None,
        timeout: float = 20.0,
        confidence_threshold: float = 0.8,
    ):
        self.table = table or PhraseTable()
        self.reasoning = reasoning
        self.timeout = timeout
        self.confidence_threshold = confidence_threshold

    async def translate(
        self,
        user_input: str,
        history: Optional[List[Dict[str, Any]]] = None,
        system_state: Optional[Dict[str, Any]] = None,
    ) -> TranslationResult:
        """
        Translate user input, trying in order: exact phrase, passthrough,
        conjunction split, partial word match, reasoning service, fallback.
        """
        normalized = normalize(user_input)

        result = (
            self._exact(normalized)
            or self._passthrough(user_input.strip(), normalized)
            or self._compound(normalized)
            or self._partial(normalized)
        )
        if result is None and normalized:
            result = await self._external(user_input.strip(), history, system_state)
        if result is None:
            result = self.fallback(user_input)

        logger.info(
            "Command translated",
            input=user_input,
            source=result.source.value,
            confidence=result.confidence,
            command=result.command,
        )
        return result

    def fallback(self, user_input: str) -> TranslationResult:
        """Diagnostic plan echoing the input and the known phrases."""
        lines = [f"Unknown command: '{user_input.strip()}'", "", "Available commands:"]
        for category, phrases in self.table.categories().items():
            lines.append(f"- {category}: {', '.join(phrases)}")
        lines.append("")
        lines.append("Type 'help' for more details")
        message = "\n".join(lines)
        return TranslationResult(
            steps=[CommandStep(label="", command=f"printf '%s\\n' {shlex.quote(message)}")],
            confidence=0.0,
            source=TranslationSource.FALLBACK,
            warnings=["Input not recognized"],
        )

    # --- rules ---

    def _from_rule(
        self,
        rule: PhraseRule,
        source: TranslationSource,
        confidence: float,
        warnings: Optional[List[str]] = None,
    ) -> TranslationResult:
        return TranslationResult(
            steps=list(rule.steps),
            confidence=confidence,
            source=source,
            warnings=warnings or [],
        )

    def _exact(self, normalized: str) -> Optional[TranslationResult]:
        rule = self.table.exact(normalized)
        if rule is None:
            return None
        return self._from_rule(rule, TranslationSource.EXACT_MATCH, 1.0)

    def _passthrough(self, original: str, normalized: str) -> Optional[TranslationResult]:
        head = normalized.split(" ", 1)[0]
        if head not in PASSTHROUGH_COMMANDS:
            return None
        return TranslationResult(
            steps=[CommandStep(label="", command=original)],
            confidence=0.9,
            source=TranslationSource.PASSTHROUGH,
        )

    def _compound(self, normalized: str) -> Optional[TranslationResult]:
        parts = [part for part in CONJUNCTIONS.split(normalized) if part]
        if len(parts) < 2:
            return None

        rule = self.table.first_containing_all(parts)
        if rule is not None:
            return self._from_rule(rule, TranslationSource.COMPOUND_MATCH, 0.9)

        steps: List[CommandStep] = []
        warnings: List[str] = []
        confidences: List[float] = []
        for part in parts:
            resolved = self._resolve_part(part)
            if resolved is None:
                warnings.append(f"Could not resolve '{part}', skipped")
                continue
            part_steps, confidence, part_warnings = resolved
            confidences.append(confidence)
            warnings.extend(part_warnings)
            for step in part_steps:
                label = f"{part}: {step.label}" if step.label else part
                steps.append(CommandStep(label=label, command=step.command, check=False))

        if not steps:
            return None
        confidence = 0.85 if all(c == 1.0 for c in confidences) else min(confidences)
        return TranslationResult(
            steps=steps,
            confidence=confidence,
            source=TranslationSource.COMPOUND_MATCH,
            warnings=warnings,
        )

    def _resolve_part(self, part: str) -> Optional[Tuple[List[CommandStep], float, List[str]]]:
        result = self._exact(part) or self._partial(part)
        if result is None:
            return None
        return list(result.steps), result.confidence, list(result.warnings)

    def _partial(self, normalized: str) -> Optional[TranslationResult]:
        words = [
            w for w in re.findall(r"[a-z0-9]+", normalized)
            if len(w) > 1 and w not in STOP_WORDS
        ]
        if not words:
            return None
        match = self.table.first_containing_any(words)
        if match is None:
            return None
        rule, word = match
        return self._from_rule(
            rule,
            TranslationSource.PARTIAL_MATCH,
            0.6,
            [f"Partial match: '{word}' matched phrase '{rule.phrase}'"],
        )

    async def _external(
        self,
        user_input: str,
        history: Optional[List[Dict[str, Any]]],
        system_state: Optional[Dict[str, Any]],
    ) -> Optional[TranslationResult]:
        if self.reasoning is None:
            return None
        try:
            response = await asyncio.wait_for(
                self.reasoning.translate(user_input, history, system_state, timeout=self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Reasoning translation timed out", timeout=self.timeout)
            return None
        except ExternalServiceError as e:
            logger.warning("Reasoning translation failed, using fallback", error=str(e))
            return None
        except Exception as e:
            logger.error("Reasoning translation failed unexpectedly, using fallback", error=str(e))
            return None

        if response.confidence < self.confidence_threshold:
            logger.info(
                "Reasoning translation rejected",
                confidence=response.confidence,
                threshold=self.confidence_threshold,
            )
            return None

        translation = response.translation
        commands = translation.sub_commands or [translation.command]
        steps = [
            CommandStep(label=f"Step {i}" if len(commands) > 1 else "", command=command)
            for i, command in enumerate(commands, start=1)
        ]
        warnings = list(response.warnings)
        if translation.requires_confirmation:
            warnings.append("Command requires confirmation")
        return TranslationResult(
            steps=steps,
            confidence=min(1.0, response.confidence),
            source=TranslationSource.EXTERNAL_SERVICE,
            warnings=warnings,
            explanation=translation.explanation,
            requires_confirmation=translation.requires_confirmation,
        )
