"""Error taxonomy shared by the processing pipeline.

Every failure that can end a pipeline run is a :class:`PipelineError` with a
stable ``code`` and a ``user_message`` that is safe to persist on a document
row. The exception's own message (``str(exc)``) may carry provider detail and
is only ever written to the operational log.
"""

from __future__ import annotations


class PipelineError(Exception):
    code = "processing_failed"
    user_message = "Processing failed. Please try again with a new document."
    retryable = False


class ProcessingFailedError(PipelineError):
    pass


class DocumentStateError(PipelineError):
    code = "invalid_document_state"
    user_message = "The document is not in a state that allows this operation."


class DocumentNotFoundError(PipelineError):
    code = "document_not_found"
    user_message = "The document does not exist."


class StoreUnavailableError(PipelineError):
    code = "store_unavailable"
    user_message = "The document could not be saved. Please try again later."


class InvalidVideoReferenceError(PipelineError):
    code = "invalid_video_reference"
    user_message = "The link is not a supported video URL."


class QuotaExceededError(PipelineError):
    code = "quota_exceeded"
    user_message = "Your plan's monthly usage limit has been reached."

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class QuotaCheckFailedError(PipelineError):
    code = "quota_check_failed"
    user_message = "Usage limits could not be verified. Please try again later."


class MediaAcquisitionFailedError(PipelineError):
    code = "media_acquisition_failed"
    user_message = "The video could not be retrieved."


class MediaQuotaOrAuthExhaustedError(MediaAcquisitionFailedError):
    user_message = "The video platform refused the request. Please try again later."


class VideoDurationUnknownError(MediaAcquisitionFailedError):
    code = "video_duration_unknown"
    user_message = "The video's length could not be determined, so it cannot be processed."


class TranscriptionError(PipelineError):
    code = "transcription_failed"
    user_message = "The video could not be transcribed."


class TranscriptionFailedError(TranscriptionError):
    def __init__(self, message: str, *, provider_message: str | None = None) -> None:
        super().__init__(message)
        self.provider_message = provider_message


class TranscriptionTimeoutError(TranscriptionError):
    code = "transcription_timeout"
    user_message = "Transcription took too long and was stopped."


class TranscriptionRateLimitedError(TranscriptionError):
    code = "transcription_rate_limited"
    retryable = True


class TranscriptionUnavailableError(TranscriptionError):
    code = "transcription_unavailable"
    retryable = True


class SummarizationError(PipelineError):
    code = "summarization_failed"
    user_message = "The document could not be generated from the transcript."


class SummarizationFailedError(SummarizationError):
    pass


class SummarizationRateLimitedError(SummarizationError):
    code = "summarization_rate_limited"
    user_message = "The document generator is busy. Please try again later."
    retryable = True

    def __init__(self, message: str, *, retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class SummarizationParseError(SummarizationError):
    code = "summarization_parse_error"
