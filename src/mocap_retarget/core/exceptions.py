"""Exceptions raised at construction/parsing time.

Per-frame processing never raises for bad data; see Retargeter.apply_pose.
"""


class RetargetError(ValueError):
    """Skeleton binding cannot be used for retargeting."""


class UnknownBoneError(KeyError):
    """A bone name outside the canonical vocabulary was requested."""


class LandmarkFormatError(ValueError):
    """A landmark record could not be parsed."""
