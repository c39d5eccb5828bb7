"""Failure taxonomy for the proposal-ingestion pipeline.

Each class maps to one propagation policy: correlation and extraction failures drop
the message, evaluation failures leave the proposal unevaluated, persistence failures
propagate in synchronous paths, transport failures are always swallowed.
"""


class PipelineError(Exception):
    """Base class for ingestion pipeline failures."""


class CorrelationFailure(PipelineError):
    """No vendor or open RFP could be resolved for an inbound message."""


class ExtractionError(PipelineError):
    """The oracle errored or returned output that is not a proposal record."""


class EvaluationError(PipelineError):
    """The compliance oracle errored or returned a malformed verdict."""


class PersistenceError(PipelineError):
    """A store write failed."""


class TransportError(PipelineError):
    """A real-time publish could not be delivered."""


class MailboxError(Exception):
    """The mailbox provider API rejected a request or could not be reached."""
