"""User interaction handlers for deployment prompts."""

from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Callable

logger = logging.getLogger(__name__)


class QuestionCategory(str, Enum):
    """What the prompt is about."""
    CLOSE_APPS = "close_apps"       # blocking processes must be closed
    DEFERRAL = "deferral"           # user may postpone the deployment
    INFORMATION = "information"     # plain notice


@dataclass
class InteractionRequest:
    """A prompt shown to the logged-on user."""

    question: str
    options: List[str] = field(default_factory=list)
    category: QuestionCategory = QuestionCategory.INFORMATION
    title: Optional[str] = None
    context: Optional[str] = None
    default: Optional[str] = None
    timeout: Optional[int] = None               # seconds; None waits forever

    def format_prompt(self) -> str:
        """Format the request as a terminal prompt."""
        lines = []

        icons = {
            QuestionCategory.CLOSE_APPS: "🛑",
            QuestionCategory.DEFERRAL: "⏳",
            QuestionCategory.INFORMATION: "ℹ️",
        }
        icon = icons.get(self.category, "❓")

        lines.append(f"\n{icon} {self.title or 'Deployment'}")
        lines.append(f"   {self.question}")

        if self.context:
            lines.append(f"\n   {self.context}")

        if self.options:
            lines.append("\n   Options:")
            for i, option in enumerate(self.options, 1):
                default_marker = " (default)" if self.default == option else ""
                lines.append(f"   [{i}] {option}{default_marker}")

        if self.timeout:
            lines.append(f"\n   ⏱️  Continuing automatically in {self.timeout} seconds.")

        return "\n".join(lines)


@dataclass
class InteractionResponse:
    """User's response to an interaction request."""

    value: str
    selected_option: Optional[int] = None  # 1-based
    cancelled: bool = False
    timed_out: bool = False

    @classmethod
    def from_choice(cls, option_index: int, options: List[str]) -> "InteractionResponse":
        """Create response from a choice selection."""
        if 1 <= option_index <= len(options):
            return cls(value=options[option_index - 1], selected_option=option_index)
        raise ValueError(f"Invalid option index: {option_index}")

    @classmethod
    def cancelled_response(cls) -> "InteractionResponse":
        return cls(value="", cancelled=True)

    @classmethod
    def timeout_response(cls) -> "InteractionResponse":
        return cls(value="", timed_out=True)


class UserInteractionHandler(ABC):
    """Abstract base class for handling user interactions."""

    @abstractmethod
    def ask(self, request: InteractionRequest) -> InteractionResponse:
        """
        Present a request to the user and get their response.

        Args:
            request: The interaction request to present

        Returns:
            The user's response. ``timed_out`` is set when ``request.timeout``
            elapsed without an answer.
        """

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """
        Send a notification to the user (no response needed).

        Args:
            message: The message to display
            level: Severity level (info, warning, error, success)
        """


class CLIInteractionHandler(UserInteractionHandler):
    """Terminal interaction handler."""

    def __init__(self, input_func: Callable[[str], str] = input) -> None:
        self.input_func = input_func

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        print(request.format_prompt())

        try:
            return self._handle_choice(request)
        except KeyboardInterrupt:
            print("\n   (cancelled)")
            return InteractionResponse.cancelled_response()
        except EOFError:
            return InteractionResponse.cancelled_response()

    def _read(self, prompt: str, timeout: Optional[int]) -> Optional[str]:
        """Read one line; ``None`` when ``timeout`` expires first."""
        if not timeout:
            return self.input_func(prompt)

        answers: "queue.Queue[object]" = queue.Queue()

        def reader() -> None:
            try:
                answers.put(self.input_func(prompt))
            except (EOFError, KeyboardInterrupt) as exc:
                answers.put(exc)

        threading.Thread(target=reader, daemon=True).start()
        try:
            answer = answers.get(timeout=timeout)
        except queue.Empty:
            return None
        if isinstance(answer, BaseException):
            raise answer
        return str(answer)

    def _handle_choice(self, request: InteractionRequest) -> InteractionResponse:
        while True:
            prompt = "\n   Select"
            if request.default in request.options:
                prompt += f" [{request.options.index(request.default) + 1}]"
            prompt += ": "

            user_input = self._read(prompt, request.timeout)
            if user_input is None:
                print("\n   (timed out)")
                return InteractionResponse.timeout_response()
            user_input = user_input.strip()

            if not user_input and request.default in request.options:
                idx = request.options.index(request.default) + 1
                return InteractionResponse.from_choice(idx, request.options)

            try:
                return InteractionResponse.from_choice(int(user_input), request.options)
            except ValueError:
                print(f"   ❌ Enter a number between 1 and {len(request.options)}")

    def notify(self, message: str, level: str = "info") -> None:
        icons = {
            "info": "ℹ️",
            "warning": "⚠️",
            "error": "❌",
            "success": "✅",
        }
        icon = icons.get(level, "•")
        print(f"\n{icon} {message}")


class CallbackInteractionHandler(UserInteractionHandler):
    """
    Interaction handler that uses callbacks.
    Useful for GUI front ends and tests.
    """

    def __init__(
        self,
        ask_callback: Callable[[InteractionRequest], InteractionResponse],
        notify_callback: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        self.ask_callback = ask_callback
        self.notify_callback = notify_callback or (lambda msg, lvl: logger.info("[%s] %s", lvl, msg))

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        return self.ask_callback(request)

    def notify(self, message: str, level: str = "info") -> None:
        self.notify_callback(message, level)


class AutoResponseHandler(UserInteractionHandler):
    """
    Never blocks: answers every prompt from defaults.
    Used for Silent and NonInteractive sessions.
    """

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        logger.info("Auto-responding to: %s", request.question[:80])

        if request.default:
            if request.default in request.options:
                return InteractionResponse.from_choice(request.options.index(request.default) + 1, request.options)
            return InteractionResponse(value=request.default)

        if request.options:
            return InteractionResponse.from_choice(1, request.options)
        return InteractionResponse(value="")

    def notify(self, message: str, level: str = "info") -> None:
        logger.info("[%s] %s", level, message)
