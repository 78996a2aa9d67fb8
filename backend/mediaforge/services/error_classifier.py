"""
Error Classifier - Map worker exceptions to stable error codes
"""

from typing import Dict, Any
import httpx

from mediaforge.core.provider_adapter import ProviderError, ProviderTimeoutError
from mediaforge.services.downloader import MediaDownloadError
from mediaforge.services.ffmpeg_stitcher import FFmpegError
from mediaforge.services.media_storage import StorageUploadError


class ErrorClassifier:
    """
    Classify errors raised while processing a job

    The code is stored on the job and logged; the client only ever sees
    the job's error string.
    """

    # Error codes
    ERROR_PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    ERROR_PROVIDER_REJECTED = "PROVIDER_REJECTED"
    ERROR_PROVIDER_FAILED = "PROVIDER_FAILED"
    ERROR_NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    ERROR_NETWORK_ERROR = "NETWORK_ERROR"
    ERROR_DOWNLOAD_TOO_LARGE = "DOWNLOAD_TOO_LARGE"
    ERROR_STITCH_FAILED = "STITCH_FAILED"
    ERROR_FFMPEG_NOT_FOUND = "FFMPEG_NOT_FOUND"
    ERROR_STORAGE_UPLOAD_FAILED = "STORAGE_UPLOAD_FAILED"
    ERROR_UNKNOWN = "UNKNOWN_ERROR"

    def classify(self, error: Exception) -> Dict[str, Any]:
        """
        Classify error

        Args:
            error: Exception to classify

        Returns:
            Dict with code, message, classification, retryable
        """
        if isinstance(error, ProviderTimeoutError):
            return self._result(
                self.ERROR_PROVIDER_TIMEOUT,
                "Timed out waiting for the provider result",
                retryable=True,
            )

        if isinstance(error, ProviderError):
            status = error.status_code
            if status is not None and 400 <= status < 500 and status != 429:
                return self._result(
                    self.ERROR_PROVIDER_REJECTED,
                    f"Provider rejected the request: {error.message}",
                    retryable=False,
                )
            return self._result(
                self.ERROR_PROVIDER_FAILED,
                f"Provider failed: {error.message}",
                retryable=status is None or status >= 500 or status == 429,
            )

        if isinstance(error, httpx.TimeoutException):
            return self._result(
                self.ERROR_NETWORK_TIMEOUT,
                "Network timeout while talking to an upstream service",
                retryable=True,
            )

        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            return self._result(
                self.ERROR_NETWORK_ERROR,
                f"Upstream download failed with HTTP {status}",
                retryable=status >= 500,
            )

        if isinstance(error, httpx.HTTPError):
            return self._result(
                self.ERROR_NETWORK_ERROR,
                "Network error occurred",
                retryable=True,
            )

        if isinstance(error, MediaDownloadError):
            return self._result(self.ERROR_DOWNLOAD_TOO_LARGE, str(error), retryable=False)

        # FFmpeg errors
        if isinstance(error, FFmpegError):
            code = (
                self.ERROR_FFMPEG_NOT_FOUND
                if error.code == self.ERROR_FFMPEG_NOT_FOUND
                else self.ERROR_STITCH_FAILED
            )
            return self._result(code, error.message, retryable=False)

        if isinstance(error, StorageUploadError):
            return self._result(
                self.ERROR_STORAGE_UPLOAD_FAILED,
                str(error),
                retryable=True,
            )

        # Default - unknown error
        return self._result(
            self.ERROR_UNKNOWN,
            f"An unexpected error occurred: {str(error)}",
            retryable=False,
        )

    @staticmethod
    def _result(code: str, message: str, retryable: bool) -> Dict[str, Any]:
        return {
            "code": code,
            "message": message,
            "classification": "retryable" if retryable else "non_retryable",
            "retryable": retryable,
        }
