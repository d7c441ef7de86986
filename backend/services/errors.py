"""
Error taxonomy - Failures surfaced to the bus, the channel and the UI
"""

from __future__ import annotations

PROVIDER_MESSAGE_LIMIT = 500


class AssistantError(Exception):
    """Base class for errors whose message is shown to the user verbatim"""

    default_message = "Request failed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class MissingCredential(AssistantError):
    default_message = "Missing API key. Add it in Settings."


class EmptyInput(AssistantError):
    default_message = "Message is empty."


class Canceled(AssistantError):
    default_message = "Request canceled."


class ProviderFailure(AssistantError):
    """Network, HTTP or parse failure from the completion provider"""

    default_message = "Streaming request failed."

    def __init__(self, message: str | None = None):
        text = message or self.default_message
        if len(text) > PROVIDER_MESSAGE_LIMIT:
            text = text[:PROVIDER_MESSAGE_LIMIT]
        super().__init__(text)


class InvalidTab(AssistantError):
    default_message = "No tab selected."


class SessionBusy(AssistantError):
    default_message = "A response is already streaming for this tab."


class ObserverTimeout(AssistantError):
    default_message = "The tab did not answer the rescan request in time."
