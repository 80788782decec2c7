"""
Encoding pipeline errors.
"""


class EncodingError(Exception):
    """Base class for failures inside the encoding pipeline"""
    retryable = True


class TranscodeError(EncodingError):
    """Transcoder failed or timed out"""


class ModerationUnavailableError(EncodingError):
    """The moderation service could not be reached or answered garbage"""


class CloudDispatchError(EncodingError):
    """The cloud encoding provider refused the handoff"""


class VideoRecordMissingError(EncodingError):
    """No durable record exists for the job's video id"""
    retryable = False
