"""Package for scheduled, model-generated article publishing."""

__all__ = ["config", "models", "pipeline", "schedule"]
