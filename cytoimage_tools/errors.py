"""Error taxonomy shared by the composition and annotation modules."""
from __future__ import annotations


class CytoImageError(ValueError):
    """Base class for every error raised by :mod:`cytoimage_tools`."""


class SchemaError(CytoImageError):
    """A structural invariant of an image collection or cell table is violated."""


class NotFoundError(CytoImageError, LookupError):
    """A requested entry, id, index or channel is absent."""


class MissingMappingError(CytoImageError):
    """A discrete category has no colour and no fallback colour is configured."""


class TooManyChannelsError(CytoImageError):
    """More channels or features were requested than can be blended at once."""


__all__ = [
    "CytoImageError",
    "SchemaError",
    "NotFoundError",
    "MissingMappingError",
    "TooManyChannelsError",
]
