"""
Reel Export

Assembles ordered per-scene clips into one normalized short-form video,
with crossfade transitions, trims, mutes and an optional narration mix.
"""

__version__ = "0.1.0"
