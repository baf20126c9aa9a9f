"""Record-type configuration for epoch mirrors."""

from unixmirror.models.policy import DEFAULT_POLICY, MirrorPolicy, TimestampMirrors

__all__ = [
    "DEFAULT_POLICY",
    "MirrorPolicy",
    "TimestampMirrors",
]
