"""pubrisk - dependency risk scoring for Dart and Flutter projects."""

__version__ = "0.1.0"
