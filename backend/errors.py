"""
Nexus Scheduling Agent - Error Taxonomy
Every failure the core can surface, with the next step a user can take.
"""

from typing import Optional


class NexusError(Exception):
    """Base class for scheduling agent errors."""

    next_step = "Please try again."

    def user_message(self) -> str:
        return f"{self} {self.next_step}"


class NormalizationSkip(NexusError):
    """A raw provider record was malformed or incomplete and was dropped."""

    def __init__(self, reason: str, record_id: Optional[str] = None):
        self.reason = reason
        self.record_id = record_id
        super().__init__(f"Skipped record {record_id or '<no id>'}: {reason}")


class RetrievalUnavailable(NexusError):
    """Embedding generation or search failed; replies go out ungrounded."""

    next_step = "Answers will not cite the playbook until the embedding service is reachable."


class ActionExecutionFailure(NexusError):
    """The calendar rejected an approved mutation."""

    next_step = "Approve again to retry, decline the change, or edit the calendar manually."


class IllegalTransition(NexusError):
    """Approve/reject attempted on an action that is not pending."""

    next_step = "Only pending proposals can be approved or declined."

    def __init__(self, action_id: str, current: str, requested: str):
        self.action_id = action_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Action {action_id} is {current}; cannot move it to {requested}."
        )


class MessageNotFound(NexusError):
    """No conversation message with the given id."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"No message with id {message_id}.")


class ProviderConnectionError(NexusError):
    """A provider (calendar, LMS, AI service) could not be reached."""

    next_step = "Check the connection and retry."

    def __init__(self, provider: str, detail: str = ""):
        self.provider = provider
        self.detail = detail
        message = f"Could not reach {provider}"
        if detail:
            message += f": {detail}"
        super().__init__(message + ".")


class ProviderError(NexusError):
    """A provider answered with an error status."""

    def __init__(self, provider: str, status_code: int, detail: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{provider} returned {status_code}: {detail or 'no detail'}")


class FetchError(ProviderConnectionError):
    """A coordinated fetch failed; the resource is marked not connected."""

    def __init__(self, resource_key: str, cause: BaseException):
        self.resource_key = resource_key
        self.cause = cause
        super().__init__(resource_key, str(cause) or type(cause).__name__)


class FetchInProgress(ProviderConnectionError):
    """A fetch for the resource is still running."""

    next_step = "Still loading; try again in a moment."

    def __init__(self, resource_key: str):
        self.resource_key = resource_key
        NexusError.__init__(self, f"{resource_key} is still loading.")
        self.provider = resource_key
        self.detail = "in flight"


class RecommendationNotFound(NexusError):
    """No current detector recommendation with the given id."""

    next_step = "Refresh the recommendations and try again."

    def __init__(self, recommendation_id: str):
        self.recommendation_id = recommendation_id
        super().__init__(f"No recommendation with id {recommendation_id}.")


class DocumentRejected(NexusError):
    """An uploaded knowledge document could not be accepted."""

    next_step = "Upload a .txt, .md or .pdf file with readable text."
