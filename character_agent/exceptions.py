"""Agent 异常定义"""
from __future__ import annotations

from typing import Any


class AgentError(Exception):
    """所有 Agent 异常的基类"""

    code: str = "AGENT_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConfigurationError(AgentError):
    code = "CONFIGURATION_ERROR"


class AuthenticationError(AgentError):
    code = "AUTHENTICATION_ERROR"


class SubscriptionError(AgentError):
    code = "SUBSCRIPTION_ERROR"


class MalformedNotificationError(AgentError):
    code = "MALFORMED_NOTIFICATION"


class StepFetchError(AgentError):
    code = "STEP_FETCH_ERROR"


class EmptyInputError(AgentError):
    code = "EMPTY_INPUT"


class ExtractionError(AgentError):
    code = "EXTRACTION_FAILED"


class PersistenceError(AgentError):
    code = "PERSISTENCE_FAILED"
