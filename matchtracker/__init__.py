"""Session telemetry recorder for social-deduction matches."""

__version__ = "1.0.0"
