"""Speech-practice client: live segmentation, scoring and session results."""

__version__ = "0.1.0"
