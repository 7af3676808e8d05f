from __future__ import annotations

import numpy as np
import pytest

from incomm_field import MagneticStructure, SumConfig, IncommensurateFieldSolver


def paired_fc(re, im):
    """Re x, Im x, Re y, Im y, Re z, Im z."""
    out = np.empty(6)
    out[0::2] = re
    out[1::2] = im
    return out


@pytest.fixture
def single_atom():
    """One moment at the origin of a unit cubic cell; helix plane spanned by A, B."""
    m0 = 2.0
    A = np.array([1.0, 2.0, 2.0]) / 3.0
    B = np.array([2.0, 1.0, -2.0]) / 3.0
    st = MagneticStructure(
        cell=np.eye(3),
        positions=[[0.0, 0.0, 0.0]],
        fc=paired_fc(m0 * A, m0 * B),
        k=[0.0, 0.0, 0.0],
        phi=[0.0],
    )
    return st, m0, A, B


@pytest.fixture
def make_solver():
    def _make(structure, supercell=(1, 1, 1), **cfg):
        return IncommensurateFieldSolver(structure, SumConfig(**cfg), supercell=supercell, verbose=False)
    return _make
