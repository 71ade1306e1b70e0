from enum import Enum
from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class NotAuthenticated(AppException):
    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="NOT_AUTHENTICATED"
        )

# --- Ingestion taxonomy ---

class FailureKind(str, Enum):
    UPLOAD_FAILED = "upload_failed"
    CONVERSION_FAILED = "conversion_failed"
    PERSIST_FAILED = "persist_failed"
    ANALYSIS_FAILED = "analysis_failed"
    TIMEOUT = "timeout"

class IngestionError(AppException):
    """Base for every failure that ends an ingestion early."""

    kind: FailureKind = FailureKind.UPLOAD_FAILED
    status_text: str = "Error: Something went wrong during upload."

    def __init__(self, message: str, status_text: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=502,
            error_code=self.kind.value.upper(),
            details=details
        )
        if status_text:
            self.status_text = status_text

class UploadFailed(IngestionError):
    kind = FailureKind.UPLOAD_FAILED
    status_text = "Error: Failed to upload file"

class ConversionFailed(IngestionError):
    kind = FailureKind.CONVERSION_FAILED
    status_text = "Error: Failed to convert PDF to image"

class PersistFailed(IngestionError):
    kind = FailureKind.PERSIST_FAILED
    status_text = "Error: Failed to save review"

class AnalysisFailed(IngestionError):
    """Transport failures and unparseable analysis results alike."""
    kind = FailureKind.ANALYSIS_FAILED
    status_text = "Error: Failed to analyze resume"

class OperationTimeout(IngestionError):
    kind = FailureKind.TIMEOUT
    status_text = "Error: Operation timed out. Please try again."

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} timed out after {timeout:g}s", details={"operation": operation, "timeout": timeout})

class InvalidTransition(RuntimeError):
    pass

# --- Collaborator errors (translated by the orchestrator) ---

class BlobStoreError(Exception):
    pass

class KeyValueStoreError(Exception):
    pass

class AnalysisServiceError(Exception):
    pass

class ConversionError(Exception):
    pass

class RecordDecodeError(ValueError):
    pass

class HandleReleasedError(RuntimeError):
    pass
