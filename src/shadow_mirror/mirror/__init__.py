"""Capture pipeline: health probe, capture, anomaly guard, export.

Import the stage modules directly; ``run_cycle`` in ``pipeline`` chains them.

Usage:
    from shadow_mirror.mirror.pipeline import run_cycle
    from shadow_mirror.mirror.models import MirrorSchema, default_schema
"""
