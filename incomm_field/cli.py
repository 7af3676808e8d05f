# incomm_field/cli.py

import sys, ast, json, argparse
import numpy as np
from pathlib import Path
import pandas as pd

from .core import (
    SumConfig,
    MagneticStructure,
    IncommensurateFieldSolver,
    make_tasks,
    dump_tasks_tsv,
)


# Simple cubic cell, one moment per cell rotating in the ab plane,
# propagating along c.
DEFAULT_STRUCTURE = {
    "cell": [[4.0, 0.0, 0.0],
             [0.0, 4.0, 0.0],
             [0.0, 0.0, 4.0]],
    "positions": [[0.0, 0.0, 0.0]],
    "fc": [[1.0, 0.0, 0.0, 1.0, 0.0, 0.0]],
    "k": [0.0, 0.0, 0.1],
    "phi": [0.0],
}


def load_structure(path) -> MagneticStructure:
    with Path(path).open("r") as f:
        return MagneticStructure.from_dict(json.load(f))


def _parse_triple(text: str, cast=float):
    vals = [cast(tok) for tok in text.replace(",", " ").split()]
    if len(vals) != 3:
        raise argparse.ArgumentTypeError(f"expected 3 values, got '{text}'")
    return tuple(vals)


def main(argv=None):
    """
    Serial/parallel driver: local fields at one or more muon sites.

    Usage examples:
      incomm-field --muon "(0.5,0.5,0.5)" --nangles 36 --outdir ./fields
      incomm-field --structure mnsi.json --muon "(0.5,0.5,0.5);(0.25,0.25,0.25)" --procs 2
      incomm-field --simple --muon "(0.5,0.5,0.5)" --min-radius 0.5
    """
    # -------------------------
    # Default simulation params
    # -------------------------
    config = SumConfig(
        radius=35.0,            # Lorentz sphere radius (A)
        nnn_for_cont=8,         # nearest neighbours for the contact field
        cont_radius=4.0,        # contact cutoff (A)
        nangles=36,             # phase-angle samples
    )
    SUPERCELL = (20, 20, 20)
    MUONS = [(0.5, 0.5, 0.5)]
    MIN_RADIUS = 0.0

    # -------------------------
    # CLI parsing
    # -------------------------
    ap = argparse.ArgumentParser(description="Local magnetic field at muon sites for helical magnetic orders.")
    ap.add_argument("--structure", type=str, default=None,
                    help="JSON file with cell, positions, fc, k, phi (default: built-in cubic helix).")
    ap.add_argument("--muon", type=str, default=None,
                    help='Semicolon-separated fractional muon positions like "(0.5,0.5,0.5);(0,0,0.25)".')
    ap.add_argument("--supercell", type=str, default=None,
                    help='Supercell extension, e.g. "20,20,20".')
    ap.add_argument("--radius", type=float, default=None, help="Lorentz sphere radius (A).")
    ap.add_argument("--nnn", type=int, default=None, help="Neighbours for the contact field.")
    ap.add_argument("--cont-radius", type=float, default=None, help="Contact cutoff radius (A).")
    ap.add_argument("--nangles", type=int, default=None, help="Number of phase angles.")
    ap.add_argument("--workers", type=int, default=None, help="Threads for the lattice sum.")
    ap.add_argument("--procs", type=int, default=1,
                    help="Processes over muon sites (default: 1, serial).")
    ap.add_argument("--simple", action="store_true",
                    help="Static sum (no phase sweep) for all muon sites.")
    ap.add_argument("--min-radius", type=float, default=None,
                    help="With --simple, skip atoms closer than this to the muon (A).")
    ap.add_argument("--outdir", type=str, default="./fields",
                    help="Output directory for fields_*.dat and run_log.csv (default: ./fields).")
    ap.add_argument("--dry-run-count", action="store_true",
                    help="Print number of tasks and exit.")
    ap.add_argument("--dump-tasks", type=str, default=None,
                    help="Write tasks TSV here and exit.")
    ap.add_argument("--quiet", action="store_true", help="Suppress solver diagnostics.")
    args = ap.parse_args(argv)

    # Allow CLI to override defaults
    if args.muon:
        MUONS = [ast.literal_eval(tok) for tok in args.muon.split(";") if tok.strip()]
    if args.supercell:
        SUPERCELL = _parse_triple(args.supercell, cast=int)
    if args.radius is not None:
        config.radius = args.radius
    if args.nnn is not None:
        config.nnn_for_cont = args.nnn
    if args.cont_radius is not None:
        config.cont_radius = args.cont_radius
    if args.nangles is not None:
        config.nangles = args.nangles
    if args.workers is not None:
        config.n_workers = args.workers
    if args.min_radius is not None:
        MIN_RADIUS = args.min_radius

    OUTDIR = Path(args.outdir)

    tasks = make_tasks(MUONS)

    if args.dry_run_count:
        print(len(tasks))
        return

    if args.dump_tasks:
        dump_tasks_tsv(tasks, args.dump_tasks)
        print(f"Wrote {len(tasks)} tasks to {args.dump_tasks}")
        return

    OUTDIR.mkdir(parents=True, exist_ok=True)

    # -------------------------
    # Build solver
    # -------------------------
    if args.structure:
        structure = load_structure(args.structure)
    else:
        structure = MagneticStructure.from_dict(DEFAULT_STRUCTURE)

    solver = IncommensurateFieldSolver(
        structure,
        config,
        supercell=SUPERCELL,
        verbose=not args.quiet,
    )

    if args.simple:
        res = solver.simple_fields(MUONS, min_radius_from_atoms=MIN_RADIUS)
        out = OUTDIR / "simple_fields.dat"
        res.to_dataframe().to_csv(out, index=False)
        print(f"Wrote static fields for {len(MUONS)} muon sites to {out}")
        for fault in res.faults:
            print(f"[{fault.kind}] {fault.message}", file=sys.stderr)
        return

    # -------------------------
    # Loop over tasks
    # -------------------------
    print(f"Running {len(tasks)} tasks into '{OUTDIR}' ...")
    if args.procs > 1:
        all_rows = list(solver.run_in_parallel(tasks, OUTDIR, max_procs=args.procs))
    else:
        all_rows = [solver.process_one_task(t, OUTDIR) for t in tasks]

    df_log = pd.DataFrame(all_rows)
    log_path = OUTDIR / "run_log.csv"
    if log_path.exists():
        df_log.to_csv(log_path, mode="a", header=False, index=False)
    else:
        df_log.to_csv(log_path, index=False)

    print(f"\nWrote {len(all_rows)} rows to {log_path}")
    print(f"Supercell: {solver.supercell}, replicas = {solver.n_replicas}")
    print(f"Cell volume = {abs(np.linalg.det(structure.cell)):.4f} A^3, "
          f"Lorentz radius = {config.radius:.3f} A")


if __name__ == "__main__":
    main()
