"""
catmorph_decoder
================

Nested cross-validated ridge decoding of vowel and speaker morph targets
from ROI-restricted fMRI voxel patterns (CATMORPH 7T experiment).

Design Principles:
    - Config-driven: subjects, ROIs, lambda grid and holdouts live in YAML
    - Pure core: inner lambda selection and outer evaluation are plain
      functions over arrays; file access goes through small collaborators
    - Two error tiers: missing/malformed inputs raise, numerical degeneracy
      becomes NaN in the result tensor
    - Reproducible: no hidden random state, provenance for every subject

Package Layout::

    cli/          Typer CLI commands (sweep, summarize, behavior-targets)
    data/         Feature store, ROI masks, target provider, behaviour labels
    eval/         Splits, metrics, nested ridge CV, result tensor, group stats
    io/           Result persistence (npz, MATLAB-layout .mat, JSON)
    models/       Ridge regression
    utils/        Logging
"""

__version__ = "0.1.0"
