"""Helix decomposition and the data-quality faults it reports."""

from __future__ import annotations

import numpy as np
import pytest

from incomm_field import MagneticStructure
from tests.conftest import paired_fc


def _structure(re, im, phi=0.0):
    return MagneticStructure(
        cell=4.0 * np.eye(3),
        positions=[[0.0, 0.0, 0.0]],
        fc=paired_fc(re, im),
        k=[0.0, 0.0, 0.1],
        phi=[phi],
    )


def _run(make_solver, st):
    # tiny Lorentz sphere: no image is summed, only the decomposition matters
    solver = make_solver(st, radius=1.0, cont_radius=0.5, nangles=2)
    return solver.compute([0.5, 0.5, 0.5])


def test_orthonormal_pair_reports_nothing(make_solver):
    res = _run(make_solver, _structure([1.5, 0.0, 0.0], [0.0, 1.5, 0.0]))
    assert res.faults == []


def test_non_orthogonal_pair_is_reported(make_solver):
    re = [1.0, 0.0, 0.0]
    im = [0.5, np.sqrt(0.75), 0.0]
    res = _run(make_solver, _structure(re, im))
    found = res.faults_of("not_orthogonal")
    assert len(found) == 1
    assert found[0].atom == 0
    assert found[0].magnitude == pytest.approx(0.5)
    assert res.faults_of("moment_mismatch") == []


def test_norm_mismatch_is_reported(make_solver):
    res = _run(make_solver, _structure([2.0, 0.0, 0.0], [0.0, 1.0, 0.0]))
    found = res.faults_of("moment_mismatch")
    assert len(found) == 1
    assert found[0].magnitude == pytest.approx(1.0)


def test_nonzero_phase_is_reported(make_solver):
    res = _run(make_solver, _structure([1.0, 0.0, 0.0], [0.0, 1.0, 0.0], phi=0.25))
    assert [f.kind for f in res.faults] == ["phase_offset"]


def test_faults_do_not_stop_the_computation(make_solver):
    st = _structure([1.0, 0.0, 0.0], [0.5, np.sqrt(0.75), 0.0])
    solver = make_solver(st, supercell=(4, 4, 4), radius=7.0, cont_radius=4.0, nangles=3)
    res = solver.compute([0.5, 0.5, 0.5])
    assert res.faults_of("not_orthogonal")
    assert res.dipolar.shape == (3, 3)
    assert np.all(np.isfinite(res.dipolar))


def test_basis_vectors(make_solver):
    st = _structure([0.0, 3.0, 4.0], [0.0, -4.0, 3.0])
    solver = make_solver(st, supercell=(3, 3, 3), radius=1.0)
    faults = []
    helix = solver._decompose_helix(faults)
    assert faults == []
    assert helix.m0[0] == pytest.approx(5.0)
    np.testing.assert_allclose(helix.a[0], [0.0, 0.6, 0.8])
    np.testing.assert_allclose(helix.b[0], [0.0, -0.8, 0.6])
    # unit cell copy at (1, 1, 1) of the 3x3x3 supercell
    np.testing.assert_allclose(helix.ref[0], [4.0, 4.0, 4.0])


def test_vanishing_component_is_rejected(make_solver):
    st = _structure([1.0, 0.0, 0.0], [0.0, 0.0, 0.0])
    with pytest.raises(ValueError):
        _run(make_solver, st)
