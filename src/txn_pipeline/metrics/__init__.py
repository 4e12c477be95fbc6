from .registry import CounterSnapshot, PipelineCounters

__all__ = ["CounterSnapshot", "PipelineCounters"]
