"""Human interaction channels — ask an operator for a Steam Guard code."""

from __future__ import annotations

import abc
import logging

logger = logging.getLogger(__name__)


class HumanChannel(abc.ABC):
    """Reaches a human operator.

    ``request_code`` blocks the calling thread until the operator
    answers; ``notify`` is fire-and-forget.
    """

    @abc.abstractmethod
    def request_code(self, prompt: str) -> str:
        """Ask the operator for a short code and return the reply."""

    @abc.abstractmethod
    def notify(self, text: str) -> None:
        """Deliver a notice to the operator."""


class ConsoleChannel(HumanChannel):
    """Operator channel backed by the process's own stdin/stdout."""

    def request_code(self, prompt: str) -> str:
        logger.warning("Operator input required: %s", prompt)
        return input(f"{prompt} ").strip()

    def notify(self, text: str) -> None:
        logger.warning("Operator notice: %s", text)
        print(text, flush=True)
