"""Boundary layer: persistence and source hosting adapters."""
