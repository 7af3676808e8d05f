"""Angle sweep: sinusoid structure of the field curves and output layout."""

from __future__ import annotations

import numpy as np
import pytest


@pytest.fixture
def single_result(single_atom, make_solver):
    st, *_ = single_atom
    solver = make_solver(st, radius=0.9, cont_radius=0.9, nnn_for_cont=1, nangles=8)
    return solver.compute([0.5, 0.0, 0.0])


def test_angles_are_uniform_in_half_open_interval(single_result):
    np.testing.assert_allclose(single_result.angles, 2 * np.pi * np.arange(8) / 8)
    assert single_result.angles[-1] < 2 * np.pi


def test_period_closes(single_result):
    at0 = single_result.at_angle(0.0)
    at2pi = single_result.at_angle(2 * np.pi)
    for name in ("contact", "dipolar", "lorentz"):
        np.testing.assert_allclose(at0[name], at2pi[name], atol=1e-12)


@pytest.mark.parametrize("name", ["contact", "dipolar", "lorentz"])
def test_curves_are_pure_sinusoids(single_result, name):
    curve = getattr(single_result, name)
    C, S = single_result.coeffs[name]
    for alpha, value in zip(single_result.angles, curve):
        np.testing.assert_allclose(value, np.cos(alpha) * C - np.sin(alpha) * S, atol=1e-12)
    # half a turn flips the field
    np.testing.assert_allclose(curve[4], -curve[0], atol=1e-12)
    np.testing.assert_allclose(curve[6], -curve[2], atol=1e-12)


def test_at_angle_matches_sampled_points(single_result):
    for n in (1, 3, 5):
        got = single_result.at_angle(single_result.angles[n])
        np.testing.assert_allclose(got["dipolar"], single_result.dipolar[n], atol=1e-12)


def test_flat_layout(single_result):
    cont, dip, lor = single_result.flat()
    assert cont.shape == dip.shape == lor.shape == (24,)
    np.testing.assert_array_equal(dip[3:6], single_result.dipolar[1])


def test_dataframe_columns(single_result):
    df = single_result.to_dataframe()
    assert len(df) == 8
    assert list(df.columns) == [
        "angle",
        "bcont_x", "bcont_y", "bcont_z",
        "bdip_x", "bdip_y", "bdip_z",
        "blor_x", "blor_y", "blor_z",
    ]
    np.testing.assert_allclose(df["bdip_z"].to_numpy(), single_result.dipolar[:, 2])
