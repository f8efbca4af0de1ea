"""Step execution: one step definition in, one step result out."""
from relayflow.steps.executor import StepExecutor

__all__ = ["StepExecutor"]
