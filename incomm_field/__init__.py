# incomm_field/__init__.py

"""
Local magnetic fields at muon sites for incommensurate (helical) magnetic orders.

This package exposes:
- incomm_field.core: lattice sums, helix decomposition and angle sweep
- incomm_field.pile: bounded nearest-neighbour selector for the contact field
- incomm_field.cli: CLI driver for batch runs over muon sites
"""

from .core import (
    MU_B_FIELD,
    LORENTZ_FACTOR,
    CONTACT_FACTOR,
    SumConfig,
    MagneticStructure,
    Fault,
    FieldResult,
    StaticFieldResult,
    IncommensurateFieldSolver,
    fast_incomm_sum,
    simple_sum,
    make_tasks,
    dump_tasks_tsv,
    load_tasks_tsv,
)
from .pile import ContactPile, SENTINEL_RANK

__all__ = [
    "MU_B_FIELD",
    "LORENTZ_FACTOR",
    "CONTACT_FACTOR",
    "SumConfig",
    "MagneticStructure",
    "Fault",
    "FieldResult",
    "StaticFieldResult",
    "IncommensurateFieldSolver",
    "fast_incomm_sum",
    "simple_sum",
    "make_tasks",
    "dump_tasks_tsv",
    "load_tasks_tsv",
    "ContactPile",
    "SENTINEL_RANK",
]
