"""
Error taxonomy for the transcoding pipeline.

Every fatal stage failure is a PipelineError. ``kind`` tells callers who can
fix it:

- ``source``: the upload itself is unusable (fetch/probe)
- ``system``: encoding, storage or infrastructure trouble
- ``preview``: preview degraded; never surfaces as a job failure
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    kind: str = "system"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class FetchError(PipelineError):
    kind = "source"

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message, code=code or (f"http_{status_code}" if status_code else None))
        self.status_code = status_code


class ProbeError(PipelineError):
    kind = "source"


class EncodeError(PipelineError):
    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        returncode: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, code=code)
        self.tier = tier
        self.returncode = returncode


class SegmentError(EncodeError):
    pass


class ThumbnailError(PipelineError):
    pass


class PreviewError(PipelineError):
    kind = "preview"


class PublishError(PipelineError):
    def __init__(self, message: str, key: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.key = key


class NotifyError(PipelineError):
    pass


class JobCancelled(PipelineError):
    def __init__(self, message: str = "Job cancelled"):
        super().__init__(message, code="cancelled")
