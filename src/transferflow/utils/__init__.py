"""Utility modules for transferflow."""

from transferflow.utils.sequencing import RequestSequence, StepGuard

__all__ = ["RequestSequence", "StepGuard"]
