"""Core HR module — organisation models and the lookups the leave engine relies on."""

from backend.core_hr.models import Department, Employee, Location

__all__ = ["Employee", "Department", "Location"]
