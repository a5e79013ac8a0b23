"""Runs the lab scenarios defined in ``metadata/labs``."""

from triggerlab.labs.runner import LabReport, LabRunner, format_rows

__all__ = ["LabReport", "LabRunner", "format_rows"]
