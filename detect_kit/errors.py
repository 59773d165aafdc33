"""
Typed, request-scoped failures raised by the detection pipeline.

Every stage aborts the whole request with one of these; partial detections are
never returned.
"""


class DetectKitError(Exception):
    """Base class for detect_kit errors."""


class InvalidImageError(DetectKitError, ValueError):
    """Input image is empty, malformed or has fewer than 3 channels."""


class InferenceError(DetectKitError, RuntimeError):
    """Backend invocation failed or returned a tensor with an unexpected shape."""


class ConfigurationError(DetectKitError, ValueError):
    """Invalid topk / threshold / input shape values."""
