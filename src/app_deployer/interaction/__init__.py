"""User interaction module for deployment prompts."""

from .handler import (
    UserInteractionHandler,
    InteractionRequest,
    InteractionResponse,
    CLIInteractionHandler,
    CallbackInteractionHandler,
    AutoResponseHandler,
    QuestionCategory,
)

__all__ = [
    "UserInteractionHandler",
    "InteractionRequest",
    "InteractionResponse",
    "CLIInteractionHandler",
    "CallbackInteractionHandler",
    "AutoResponseHandler",
    "QuestionCategory",
]
