"""Daily digest pipeline: a resumable state machine publishing one digest per day."""

__version__ = "0.1.0"
