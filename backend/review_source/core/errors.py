"""
Review error taxonomy
"""
from typing import Optional


class ReviewError(Exception):
    """Base class for review failures"""


class TransportError(ReviewError):
    """Network or HTTP failure talking to the model server"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReviewCancelled(ReviewError):
    """The operation was cancelled through its cancellation token"""

    def __init__(self, message: str = "Review cancelled"):
        super().__init__(message)


class DetectionFailure(ReviewError):
    """Language classification returned no usable language"""

    def __init__(self, message: str = "Language not detected"):
        super().__init__(message)


class EmptySourceError(ReviewError):
    """Nothing to review"""

    def __init__(self, message: str = "Please paste or open a code file"):
        super().__init__(message)


class StreamBusyError(ReviewError):
    """A stream is already active on this client"""
