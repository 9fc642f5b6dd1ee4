"""Bounded contexts of the boot orchestrator: loading, pipeline, recovery."""
