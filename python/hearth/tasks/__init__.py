"""Maintenance tasks run by the API process at boot."""

from hearth.tasks.sweep_pending import SweepResult, sweep_pending_images

__all__ = ["SweepResult", "sweep_pending_images"]
