"""
Custom exceptions for scribebot, providing a structured error hierarchy.

Pipeline errors carry two texts: `message` for logs and `user_message` for
the chat notifier, the latter including remediation where there is one.
"""
from enum import Enum
from typing import List, Optional


class ScribeBaseException(Exception):
    """Base exception for all custom exceptions in this package."""

    pass


class ConfigurationError(ScribeBaseException):
    """Raised for errors in configuration, like missing keys or invalid values."""

    pass


class APIError(ScribeBaseException):
    """Raised for errors related to external API interactions."""

    pass


class InferenceError(ScribeBaseException):
    """Raised for errors during model inference (text, speech, image)."""

    pass


class StorageError(APIError):
    """Raised when the persistence sink rejects a read or write."""

    pass


class PipelineError(InferenceError):
    """Base for every failure that can abort (or degrade) a pipeline run."""

    default_user_message = "Processing failed."

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self._user_message = user_message

    @property
    def user_message(self) -> str:
        text = self._user_message or self.default_user_message
        if self.remediation:
            text = f"{text}\n{self.remediation}"
        return text


# ---------------------------------------------------------------- acquisition


class AcquisitionFailureKind(Enum):
    TOOL_MISSING = "tool_missing"
    EXHAUSTED = "exhausted"
    REJECTED = "rejected"


class AcquisitionFailed(PipelineError):
    """Every retrieval strategy failed, or the tool is not installed."""

    default_user_message = "Could not download the video audio."

    def __init__(
        self,
        message: str,
        kind: AcquisitionFailureKind = AcquisitionFailureKind.EXHAUSTED,
        attempts: Optional[List[str]] = None,
        user_message: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message, user_message=user_message, remediation=remediation)
        self.kind = kind
        self.attempts = list(attempts or [])

    @property
    def is_fatal(self) -> bool:
        return self.kind is not AcquisitionFailureKind.EXHAUSTED


class ConversionFailed(PipelineError):
    default_user_message = "Audio conversion failed."


# -------------------------------------------------------------- transcription


class TranscriptionFailed(PipelineError):
    default_user_message = "Transcription failed."


class EmptyTranscription(TranscriptionFailed):
    default_user_message = "The transcription came back empty. The video may have no speech."


class TranscriptionTimeout(TranscriptionFailed):
    default_user_message = "Transcription took too long and was abandoned."


# ------------------------------------------------------------ text generation


class GenerationError(PipelineError):
    """Base for text-generation backend failures."""

    default_user_message = "Article generation failed."


class BackendUnreachable(GenerationError):
    default_user_message = "The text generation backend is unreachable."

    def __init__(self, endpoint: str, detail: str = ""):
        message = f"Cannot reach text generation backend at {endpoint}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            message,
            user_message=f"Cannot reach the text generation backend at {endpoint}.",
            remediation="Make sure Ollama is running (`ollama serve`) and check with `ollama list`.",
        )
        self.endpoint = endpoint


class ModelNotFound(GenerationError):
    default_user_message = "The text generation model was not found."

    def __init__(self, model: str, detail: str = ""):
        message = f"Model {model!r} not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            message,
            user_message=f'Model "{model}" was not found on the backend.',
            remediation=f"Pull it first: `ollama pull {model}`.",
        )
        self.model = model


class GenerationTimeout(GenerationError):
    default_user_message = "The text generation backend did not answer in time."

    def __init__(self, model: str, detail: str = ""):
        message = f"Generation with {model!r} timed out"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            message,
            user_message=f'Model "{model}" did not respond within the timeout.',
            remediation="Try a lighter model or a shorter transcript.",
        )
        self.model = model


class GenerationFailed(GenerationError):
    default_user_message = "Article generation failed."


# ----------------------------------------------------------- image generation


class ImageGenerationError(PipelineError):
    """Base for image failures. Never fatal to a pipeline run."""

    default_user_message = "Image generation failed."

    def __init__(
        self,
        message: str,
        provider: str = "",
        model: str = "",
        user_message: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message, user_message=user_message, remediation=remediation)
        self.provider = provider
        self.model = model
        self.attempts: List["ImageGenerationError"] = []


class MissingCredential(ImageGenerationError):
    default_user_message = "Image provider credential is not configured."


class ProviderUnauthorized(ImageGenerationError):
    default_user_message = "The image provider rejected the credential."


class ModelUnavailable(ImageGenerationError):
    default_user_message = "The image model is not available on the provider."


class ImageGenerationFailed(ImageGenerationError):
    default_user_message = "Image generation failed."


# ------------------------------------------------------------------- pipeline


class PipelineTimeout(PipelineError):
    default_user_message = "Processing exceeded the overall time limit and was abandoned."
