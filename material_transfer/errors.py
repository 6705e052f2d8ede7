"""Error taxonomy for model calls and the transfer workflow."""

from __future__ import annotations

from typing import Optional


class TransferError(RuntimeError):
    """Base class for every failure raised by the material transfer core."""


class RecitationRejected(TransferError):
    """The model refused because its output looked too similar to existing content."""

    def __init__(self, message: Optional[str] = None, attempts: int = 1):
        self.attempts = attempts
        super().__init__(
            message
            or (
                "The AI model stopped processing because the content might be too similar to "
                f"existing data. ({attempts} attempt{'s' if attempts != 1 else ''} made)"
            )
        )


class NoContentReturned(TransferError):
    """The call succeeded but the expected text or image part was missing."""


class TransportError(TransferError):
    """Network, API or parse failure while talking to the model."""

    def __init__(self, message: str, attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class ConfigurationError(TransferError):
    """Missing credentials or setup; never retried."""


class GenerationCancelled(TransferError):
    """The caller cancelled a generation run before it finished."""


RECITATION_GUIDANCE = (
    "The AI model declined to generate an image because the result might be too similar "
    "to existing content.\n"
    "• Try a different material or scene image\n"
    "• Place the marker on a more distinctive part of the material\n"
    "• Select a smaller or more specific target area"
)


def describe_failure(exc: BaseException) -> str:
    """Render a user-facing message that tells recitation apart from generic failures."""
    if isinstance(exc, RecitationRejected):
        return f"{RECITATION_GUIDANCE}\n({exc.attempts} attempts made)"
    if isinstance(exc, ConfigurationError):
        return f"The generator is not configured: {exc}"
    if isinstance(exc, GenerationCancelled):
        return "Generation was cancelled."
    return f"Failed to generate the image. {exc}\nPlease try again."


__all__ = [
    "TransferError",
    "RecitationRejected",
    "NoContentReturned",
    "TransportError",
    "ConfigurationError",
    "GenerationCancelled",
    "RECITATION_GUIDANCE",
    "describe_failure",
]
