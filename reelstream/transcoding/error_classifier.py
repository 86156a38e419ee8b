"""
Encoder diagnostic classification.

Maps ffmpeg/ffprobe stderr onto a small set of categories so failures carry
a machine-readable code and a human-readable description:

- resource: the host ran out of something (disk, memory, descriptors)
- fatal: the input or the command can never succeed
- transient: a temporary condition (I/O hiccup, interrupted read)
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class EncoderDiagnostic:
    """A known encoder failure pattern."""
    pattern: str
    category: str  # 'resource', 'fatal', 'transient'
    description: str


ENCODER_ERROR_MAP: List[EncoderDiagnostic] = [
    # Resource exhaustion
    EncoderDiagnostic("no space left", "resource", "No disk space"),
    EncoderDiagnostic("disk quota", "resource", "Disk quota exceeded"),
    EncoderDiagnostic("out of memory", "resource", "Out of memory"),
    EncoderDiagnostic("cannot allocate", "resource", "Memory allocation failed"),
    EncoderDiagnostic("too many open files", "resource", "File descriptor limit"),

    # Input and command problems
    EncoderDiagnostic("moov atom not found", "fatal", "Invalid MP4 file"),
    EncoderDiagnostic("invalid data found", "fatal", "Invalid input data"),
    EncoderDiagnostic("invalid argument", "fatal", "Invalid argument"),
    EncoderDiagnostic("no such file", "fatal", "File not found"),
    EncoderDiagnostic("permission denied", "fatal", "Permission denied"),
    EncoderDiagnostic("codec not found", "fatal", "Codec not found"),
    EncoderDiagnostic("encoder not found", "fatal", "Encoder not found"),
    EncoderDiagnostic("decoder not found", "fatal", "Decoder not found"),
    EncoderDiagnostic("unknown encoder", "fatal", "Encoder not available"),
    EncoderDiagnostic("filter not found", "fatal", "Filter not found"),
    EncoderDiagnostic("width not divisible by 2", "fatal", "Odd frame width"),
    EncoderDiagnostic("height not divisible by 2", "fatal", "Odd frame height"),
    EncoderDiagnostic("output file is empty", "fatal", "Nothing was encoded"),
    EncoderDiagnostic("does not contain any stream", "fatal", "No streams in input"),

    # Temporary conditions
    EncoderDiagnostic("resource temporarily unavailable", "transient", "Resource temporarily unavailable"),
    EncoderDiagnostic("end of file", "transient", "Unexpected end of file"),
    EncoderDiagnostic("broken pipe", "transient", "Broken pipe"),
    EncoderDiagnostic("i/o error", "transient", "I/O error"),
]


class ErrorClassifier:
    """Classifies encoder stderr output."""

    def __init__(self, error_map: Optional[List[EncoderDiagnostic]] = None):
        self.error_map = error_map or ENCODER_ERROR_MAP

    def classify(self, error_msg: str) -> Tuple[Optional[EncoderDiagnostic], str]:
        """
        Classify encoder output using the error map.

        Returns:
            Tuple of (matched_diagnostic, category). Category is 'unknown' if no match.
        """
        error_lower = error_msg.lower()

        for diagnostic in self.error_map:
            if diagnostic.pattern in error_lower:
                return diagnostic, diagnostic.category

        return None, "unknown"

    def get_error_description(self, error_msg: str) -> str:
        """Get human-readable description of the error."""
        diagnostic, _ = self.classify(error_msg)
        if diagnostic:
            return diagnostic.description
        return "Unknown error"

    def is_resource_error(self, error_msg: str) -> bool:
        _, category = self.classify(error_msg)
        return category == "resource"


# Global classifier instance
_classifier: Optional[ErrorClassifier] = None


def get_error_classifier() -> ErrorClassifier:
    """Get or create the global error classifier."""
    global _classifier
    if _classifier is None:
        _classifier = ErrorClassifier()
    return _classifier
