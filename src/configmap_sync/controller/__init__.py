"""Coordinator and wiring."""

from configmap_sync.controller.coordinator import Coordinator, build_trigger, create_coordinator

__all__ = ["Coordinator", "build_trigger", "create_coordinator"]
