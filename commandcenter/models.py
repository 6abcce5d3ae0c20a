"""Data models shared across the command pipeline."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class StreamKind(str, Enum):
    """Remote output stream."""
    STDOUT = "stdout"
    STDERR = "stderr"


class InvocationState(str, Enum):
    """Lifecycle states of an invocation."""
    RECEIVED = "received"
    TRANSLATING = "translating"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"

    @property
    def terminal(self) -> bool:
        return self in (
            InvocationState.COMPLETED,
            InvocationState.FAILED,
            InvocationState.INTERRUPTED,
        )


class TranslationSource(str, Enum):
    """Which translation rule produced a command."""
    EXACT_MATCH = "exact_match"
    PASSTHROUGH = "passthrough"
    COMPOUND_MATCH = "compound_match"
    PARTIAL_MATCH = "partial_match"
    EXTERNAL_SERVICE = "external_service"
    FALLBACK = "fallback"


class CommandStep(BaseModel):
    """One labelled command of an execution plan."""
    model_config = ConfigDict(frozen=True)

    label: str
    command: str
    check: bool = True  # non-zero exit stops the remaining steps


class TranslationResult(BaseModel):
    """Outcome of translating natural language into a command plan."""
    steps: List[CommandStep]
    confidence: float = Field(ge=0.0, le=1.0)
    source: TranslationSource
    warnings: List[str] = Field(default_factory=list)
    explanation: str = ""
    requires_confirmation: bool = False

    @property
    def command(self) -> str:
        """Display form of the plan."""
        return " && ".join(step.command for step in self.steps)


class AnalysisResult(BaseModel):
    """Structured interpretation of a command's output."""
    summary: str
    concerns: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    details: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: str = "rules"  # "external" or "rules"
    metrics: Dict[str, Any] = Field(default_factory=dict)


# --- External reasoning service schemas ---

class ExternalTranslation(BaseModel):
    """The `translation` object returned by the reasoning service."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    command: str
    sub_commands: List[str] = Field(default_factory=list, alias="subCommands")
    explanation: str = ""
    requires_confirmation: bool = Field(default=False, alias="requiresConfirmation")


class TranslationResponse(BaseModel):
    """Full translation answer from the reasoning service."""
    model_config = ConfigDict(extra="ignore")

    translation: ExternalTranslation
    confidence: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class ExternalAnalysis(BaseModel):
    """The `analysis` object returned by the reasoning service."""
    model_config = ConfigDict(extra="ignore")

    summary: str
    concerns: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    details: str = ""


class AnalysisResponse(BaseModel):
    """Full analysis answer from the reasoning service."""
    model_config = ConfigDict(extra="ignore")

    analysis: ExternalAnalysis
    confidence: float = 0.0


# --- HTTP surface ---

class ExecuteRequest(BaseModel):
    """Body of a command submission."""
    command: Optional[str] = None
    invocation_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("invocationId", "invocation_id", "messageId"),
    )
    source: str = "web"
