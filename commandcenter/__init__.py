"""
Command Center

Natural language requests translated into shell commands, executed on a
remote host over SSH, with live output fanned out to every consumer.
"""

__version__ = "0.1.0"
__author__ = "Command Center Team"

# Core components
from .config import CommandCenterConfig, get_config
from .errors import (
    CommandCenterError,
    ExternalServiceError,
    NoActiveSessionError,
    RemoteConnectError,
    RemoteStreamError,
    SessionBusyError,
)
from .models import AnalysisResult, CommandStep, InvocationState, TranslationResult, TranslationSource

# Pipeline
from .invocation import Invocation, OutputChunk
from .events import (
    CommandAnalysis,
    CommandFinished,
    CommandIssued,
    CommandOutput,
    CommandStopped,
    EventBus,
    LifecycleEvent,
)
from .translator import Translator
from .session import SessionManager
from .analyzer import Analyzer
from .orchestrator import CommandCenter

# Consumers
from .messaging import MessageBusClient
from .relay import NatsEventRelay
from .chatbot import ChatBotAdapter

__all__ = [
    "CommandCenterConfig",
    "get_config",
    "CommandCenterError",
    "ExternalServiceError",
    "NoActiveSessionError",
    "RemoteConnectError",
    "RemoteStreamError",
    "SessionBusyError",
    "AnalysisResult",
    "CommandStep",
    "InvocationState",
    "TranslationResult",
    "TranslationSource",
    "Invocation",
    "OutputChunk",
    "CommandAnalysis",
    "CommandFinished",
    "CommandIssued",
    "CommandOutput",
    "CommandStopped",
    "EventBus",
    "LifecycleEvent",
    "Translator",
    "SessionManager",
    "Analyzer",
    "CommandCenter",
    "MessageBusClient",
    "NatsEventRelay",
    "ChatBotAdapter",
]
