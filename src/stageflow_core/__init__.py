"""StageFlow Core: task stage and review workflow engine."""

__version__ = "1.0.0"
