"""CLI driver and task helpers.

Run with:
    pytest tests/test_cli.py -v
"""

from __future__ import annotations

import json

import numpy as np
import pandas as pd

from incomm_field import make_tasks, dump_tasks_tsv, load_tasks_tsv
from incomm_field.cli import main, DEFAULT_STRUCTURE


SMALL = ["--supercell", "4,4,4", "--radius", "7.5", "--nnn", "8",
         "--cont-radius", "4.0", "--nangles", "6", "--quiet"]


def test_task_tsv_roundtrip(tmp_path):
    tasks = make_tasks([(0.5, 0.5, 0.5), (0.1, 0.2, 0.3)])
    assert [t["tag"] for t in tasks] == ["mu0", "mu1"]
    path = tmp_path / "sub" / "tasks.tsv"
    dump_tasks_tsv(tasks, path)
    assert load_tasks_tsv(path) == tasks


def test_dry_run_count(capsys, tmp_path):
    main(["--muon", "(0.5,0.5,0.5);(0.25,0.25,0.25)", "--outdir", str(tmp_path / "out"),
          "--dry-run-count"])
    assert capsys.readouterr().out.strip() == "2"


def test_writes_field_curves_and_log(tmp_path):
    outdir = tmp_path / "fields"
    main(["--muon", "(0.5,0.5,0.5)", "--outdir", str(outdir)] + SMALL)

    df = pd.read_csv(outdir / "fields_mu0.dat")
    assert len(df) == 6
    assert "bdip_x" in df.columns and "bcont_z" in df.columns

    log = pd.read_csv(outdir / "run_log.csv")
    assert list(log["tag"]) == ["mu0"]
    assert log.loc[0, "n_contact"] == 8
    assert log.loc[0, "n_faults"] == 0

    # second run appends to the log
    main(["--muon", "(0.5,0.5,0.5)", "--outdir", str(outdir)] + SMALL)
    assert len(pd.read_csv(outdir / "run_log.csv")) == 2


def test_structure_file_and_simple_mode(tmp_path):
    st = dict(DEFAULT_STRUCTURE, k=[0.0, 0.0, 0.0])
    path = tmp_path / "structure.json"
    path.write_text(json.dumps(st))
    outdir = tmp_path / "simple"
    main(["--structure", str(path), "--muon", "(0.5,0.5,0.5);(0.5,0.5,0.0)",
          "--simple", "--outdir", str(outdir)] + SMALL + ["--supercell", "5,5,5"])

    df = pd.read_csv(outdir / "simple_fields.dat")
    assert len(df) == 2
    # body centre of a simple cubic ferromagnet: the dipolar sum cancels
    np.testing.assert_allclose(df.loc[0, ["bdip_x", "bdip_y", "bdip_z"]].to_numpy(dtype=float),
                               0.0, atol=1e-10)
