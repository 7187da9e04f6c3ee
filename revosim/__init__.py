"""Genealogical species identification: genome grouping, species splitting and tracking."""

__version__ = "3.0.1"