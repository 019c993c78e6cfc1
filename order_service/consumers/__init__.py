"""Consumers for events published by sibling services."""
from .orders import build_pipeline
from .pipeline import ConsumeOutcome, EventPipeline, UnknownRoutingKeyError

__all__ = ["ConsumeOutcome", "EventPipeline", "UnknownRoutingKeyError", "build_pipeline"]
