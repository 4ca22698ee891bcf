"""
Exception taxonomy for the extraction pipeline.

Only configuration and OCR failures reach the caller. Semantic-model failures
are raised by the model client and recovered page by page.
"""


class ExtractionError(Exception):
    """Base class for extraction failures."""


class ConfigurationError(ExtractionError):
    """Provider credentials or settings are missing."""


class OcrError(ExtractionError):
    """The OCR provider failed; nothing downstream can run without text."""


class SemanticModelError(ExtractionError):
    """The generative model call failed or returned nothing usable."""
