"""Error taxonomy for the image pipeline.

Startup errors (connection, channel, queue declaration) are fatal for the
owning process. Producer errors (query, publish) abort the current run.
Per-message errors are caught by the worker, logged, and never stop the
subscription; their ``transient`` flag decides between requeue and drop.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class QueueConnectionError(PipelineError):
    """Broker unreachable or credentials rejected."""


class ChannelError(PipelineError):
    pass


class QueueDeclarationError(PipelineError):
    """An existing queue was declared with incompatible parameters."""


class QueryError(PipelineError):
    """The work source could not be read."""


class PublishError(PipelineError):
    pass


class MessageError(PipelineError):
    """Failure while handling a single delivery."""

    stage = "unknown"
    transient = False

    def __init__(self, message: str, *, url: str | None = None, transient: bool | None = None) -> None:
        super().__init__(message)
        self.url = url
        if transient is not None:
            self.transient = transient


class TranscodeError(MessageError):
    pass


class MessageFormatError(TranscodeError):
    stage = "decoding_message"


class FetchError(TranscodeError):
    stage = "fetching"


class DecodeError(TranscodeError):
    stage = "decoding"


class EncodeError(TranscodeError):
    stage = "encoding"


class PersistError(MessageError):
    stage = "persisting"
    transient = True
