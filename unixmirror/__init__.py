"""Integer epoch mirrors for the temporal columns of SQLAlchemy models."""

from unixmirror.config import Settings
from unixmirror.exceptions import MirrorError, SchemaUnavailable, UnparseableTemporal
from unixmirror.models.policy import MirrorPolicy, TimestampMirrors
from unixmirror.services.mirror_service import MirrorService

__all__ = [
    "MirrorError",
    "MirrorPolicy",
    "MirrorService",
    "SchemaUnavailable",
    "Settings",
    "TimestampMirrors",
    "UnparseableTemporal",
]
