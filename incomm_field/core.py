

import os, math, csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Iterable, Dict, Any, Tuple, List, Sequence

import numpy as np
import pandas as pd
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from multiprocessing import Pool
from functools import partial

from .lattice import (
    as_cell,
    frac_to_cart,
    cart_to_frac,
    supercell_lattice,
    centred_fractional,
    replica_offsets,
)
from .pile import ContactPile

# =============================================================================
# Physical constants
# =============================================================================
# Positions in Angstrom, moments in Bohr magnetons, fields in tesla.

MU_B_FIELD = 0.9274009                    # mu_0/(4 pi) * mu_B / A^3
LORENTZ_FACTOR = 0.33333333333 * 11.654064  # (1/3) * mu_0 * mu_B / A^3
CONTACT_FACTOR = 7.769376                 # (2/3) * mu_0 * mu_B / A^3

EPS = 1e-4
CONT_SCALING_POWER = 3.0


# =============================================================================
# Config / context objects
# =============================================================================

@dataclass
class SumConfig:
    radius: float = 50.0            # Lorentz sphere radius (A)
    nnn_for_cont: int = 2           # neighbours kept for the contact term
    cont_radius: float = 5.0        # only atoms closer than this enter the contact term
    nangles: int = 1                # phase-angle samples over [0, 2 pi)
    eps: float = EPS                # tolerance for the helix checks
    cont_scaling_power: float = CONT_SCALING_POWER
    block_size: int = 4096          # replicas per work unit
    n_workers: Optional[int] = None

    @property
    def lorentz_prefactor(self) -> float:
        return LORENTZ_FACTOR * 3.0 / (4.0 * np.pi * self.radius**3)

    def validate(self) -> None:
        if not self.radius > 0.0:
            raise ValueError(f"Lorentz radius must be positive, got {self.radius}")
        if int(self.nangles) < 1:
            raise ValueError(f"nangles must be >= 1, got {self.nangles}")
        if int(self.nnn_for_cont) < 0:
            raise ValueError(f"nnn_for_cont must be >= 0, got {self.nnn_for_cont}")
        if int(self.block_size) < 1:
            raise ValueError(f"block_size must be >= 1, got {self.block_size}")


@dataclass
class MagneticStructure:
    """
    Magnetic atoms of one unit cell.

    fc holds, per atom, Re(FC_x) Im(FC_x) Re(FC_y) Im(FC_y) Re(FC_z) Im(FC_z)
    in the cartesian frame of `cell`. k is in reciprocal lattice units.
    """
    cell: np.ndarray
    positions: np.ndarray
    fc: np.ndarray
    k: np.ndarray
    phi: Optional[np.ndarray] = None

    def __post_init__(self):
        self.cell = as_cell(self.cell)
        pos = np.asarray(self.positions, dtype=np.float64)
        if pos.size == 0 or pos.size % 3 != 0:
            raise ValueError(f"positions must hold 3 reals per atom, got {pos.size} values")
        self.positions = pos.reshape(-1, 3)
        natoms = self.positions.shape[0]

        fc = np.asarray(self.fc, dtype=np.float64)
        if fc.size != 6 * natoms:
            raise ValueError(f"fc must hold 6 reals per atom ({6*natoms}), got {fc.size}")
        self.fc = fc.reshape(natoms, 6)

        k = np.asarray(self.k, dtype=np.float64).ravel()
        if k.size != 3:
            raise ValueError(f"propagation vector must have 3 components, got {k.size}")
        self.k = k

        if self.phi is None:
            self.phi = np.zeros(natoms, dtype=np.float64)
        phi = np.asarray(self.phi, dtype=np.float64).ravel()
        if phi.size != natoms:
            raise ValueError(f"phi must hold one value per atom ({natoms}), got {phi.size}")
        self.phi = phi

    @property
    def natoms(self) -> int:
        return self.positions.shape[0]

    @property
    def fc_real(self) -> np.ndarray:
        return self.fc[:, 0::2]

    @property
    def fc_imag(self) -> np.ndarray:
        return self.fc[:, 1::2]

    @classmethod
    def from_flat(cls, in_positions, in_fc, in_K, in_phi, in_cell,
                  in_natoms: Optional[int] = None) -> "MagneticStructure":
        st = cls(cell=in_cell, positions=in_positions, fc=in_fc, k=in_K, phi=in_phi)
        if in_natoms is not None and int(in_natoms) != st.natoms:
            raise ValueError(f"in_natoms={in_natoms} but {st.natoms} positions were given")
        return st

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MagneticStructure":
        return cls(
            cell=d["cell"],
            positions=d["positions"],
            fc=d["fc"],
            k=d.get("k", (0.0, 0.0, 0.0)),
            phi=d.get("phi"),
        )


@dataclass
class Fault:
    kind: str
    message: str
    atom: Optional[int] = None
    magnitude: float = float("nan")


@dataclass
class HelixBasis:
    m0: np.ndarray      # staggered moment per atom
    a: np.ndarray       # unit Re(FC) direction
    b: np.ndarray       # unit Im(FC) direction
    ref: np.ndarray     # cartesian reference position near the supercell centre


@dataclass
class HelixSums:
    cdip: np.ndarray
    sdip: np.ndarray
    clor: np.ndarray
    slor: np.ndarray

    @classmethod
    def zeros(cls, natoms: int) -> "HelixSums":
        return cls(*(np.zeros((natoms, 3), dtype=np.float64) for _ in range(4)))


@dataclass
class FieldResult:
    angles: np.ndarray
    contact: np.ndarray
    dipolar: np.ndarray
    lorentz: np.ndarray
    coeffs: Dict[str, Tuple[np.ndarray, np.ndarray]]
    faults: List[Fault] = field(default_factory=list)
    n_contact: int = 0
    n_images: int = 0

    def at_angle(self, angle: float) -> Dict[str, np.ndarray]:
        """Field components at an arbitrary phase angle: cos(angle) C - sin(angle) S."""
        c, s = math.cos(angle), math.sin(angle)
        return {name: c * C - s * S for name, (C, S) in self.coeffs.items()}

    def flat(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self.contact.ravel(), self.dipolar.ravel(), self.lorentz.ravel()

    def faults_of(self, kind: str) -> List[Fault]:
        return [f for f in self.faults if f.kind == kind]

    def to_dataframe(self) -> pd.DataFrame:
        cols = {"angle": self.angles}
        for tag, arr in (("bcont", self.contact), ("bdip", self.dipolar), ("blor", self.lorentz)):
            for i, ax in enumerate("xyz"):
                cols[f"{tag}_{ax}"] = arr[:, i]
        return pd.DataFrame(cols)


@dataclass
class StaticFieldResult:
    probes: np.ndarray
    contact: np.ndarray
    dipolar: np.ndarray
    lorentz: np.ndarray
    faults: List[Fault] = field(default_factory=list)

    def flat(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self.contact.ravel(), self.dipolar.ravel(), self.lorentz.ravel()

    def to_dataframe(self) -> pd.DataFrame:
        cols = {}
        for i, ax in enumerate("xyz"):
            cols[f"mu_{ax}"] = self.probes[:, i]
        for tag, arr in (("bcont", self.contact), ("bdip", self.dipolar), ("blor", self.lorentz)):
            for i, ax in enumerate("xyz"):
                cols[f"{tag}_{ax}"] = arr[:, i]
        return pd.DataFrame(cols)


# =============================================================================
# Solver class
# =============================================================================

class IncommensurateFieldSolver:
    """
    Local field at a muon site for a helical (incommensurate) magnetic order.

    The lattice sum is done once per muon site; the dipolar, Lorentz and
    contact fields are then reconstructed for every phase angle of the
    incommensurate modulation.
    """

    def __init__(
        self,
        structure: MagneticStructure,
        config: SumConfig,
        supercell: Sequence[int] = (10, 10, 10),
        verbose: bool = True,
    ):
        config.validate()
        sc = np.asarray(supercell, dtype=np.int64).ravel()
        if sc.size != 3:
            raise ValueError(f"supercell must have 3 entries, got {sc.size}")
        if np.any(sc <= 0):
            raise ValueError(f"supercell dimensions must be positive, got {tuple(sc)}")

        self.structure = structure
        self.config = config
        self.supercell = tuple(int(x) for x in sc)
        self.verbose = verbose

        self.cell = structure.cell
        self.inv_cell = np.linalg.inv(self.cell)
        self.sc_lat = supercell_lattice(self.cell, self.supercell)
        self.n_replicas = int(np.prod(sc))

        if verbose:
            print(f"[lattice] supercell = {self.supercell}, replicas = {self.n_replicas}, "
                  f"atoms = {structure.natoms}")
            print(f"[lattice] radius = {config.radius:.4f} A, cont_radius = {config.cont_radius:.4f} A, "
                  f"nnn_for_cont = {config.nnn_for_cont}")

    def muon_cartesian(self, muon_frac) -> np.ndarray:
        mu = np.asarray(muon_frac, dtype=np.float64).ravel()
        if mu.size != 3:
            raise ValueError(f"muon position must have 3 components, got {mu.size}")
        return frac_to_cart(centred_fractional(mu, self.supercell), self.sc_lat)

    def _report(self, faults: List[Fault], fault: Fault) -> None:
        faults.append(fault)
        if self.verbose:
            print(f"[{fault.kind}] {fault.message}")

    #=============================================================================
    # Helix decomposition
    #=============================================================================

    def _decompose_helix(self, faults: List[Fault]) -> HelixBasis:
        """
        Split each Fourier component into m0 * (cos . A + sin . B).

        |Re FC| and |Im FC| must agree and Re FC must be orthogonal to Im FC
        for a proper helix; violations are recorded and the data used as given.
        """
        st = self.structure
        eps = self.config.eps
        re = st.fc_real
        im = st.fc_imag

        m0 = np.linalg.norm(re, axis=1)
        im_norm = np.linalg.norm(im, axis=1)
        for a in range(st.natoms):
            if m0[a] == 0.0 or im_norm[a] == 0.0:
                raise ValueError(
                    f"Atom {a} has a vanishing real or imaginary Fourier component; "
                    "the helix basis is undefined."
                )

        A = re / m0[:, None]
        B = im / im_norm[:, None]

        for a in range(st.natoms):
            diff = abs(m0[a] - im_norm[a])
            if diff > eps:
                self._report(faults, Fault(
                    "moment_mismatch",
                    f"Staggered moment differs in real and imaginary parts of atom {a} by {diff:e}",
                    atom=a, magnitude=float(diff),
                ))
            dot = float(A[a] @ B[a])
            if abs(dot) > eps:
                self._report(faults, Fault(
                    "not_orthogonal",
                    f"Real and imaginary parts of atom {a} are not orthogonal by {dot:e}",
                    atom=a, magnitude=dot,
                ))
            if abs(st.phi[a]) > eps:
                self._report(faults, Fault(
                    "phase_offset",
                    f"Atom {a} has phase {st.phi[a]:e}; nonzero phases are less tested, "
                    "double check the results",
                    atom=a, magnitude=float(st.phi[a]),
                ))

        ref = frac_to_cart(centred_fractional(st.positions, self.supercell), self.sc_lat)

        if self.verbose:
            for a in range(st.natoms):
                print(f"[helix] atom {a}: m0 = {m0[a]:.6f}, A = {A[a]}, B = {B[a]}")
        return HelixBasis(m0=m0, a=A, b=B, ref=ref)

    #=============================================================================
    # Lattice reduction
    #=============================================================================

    def _reduce_block(self, start, stop, *, helix, muon, sums, dip_locks, lor_locks, pile):
        """
        Accumulate replicas [start, stop) into the shared per-atom sums.

        Partial sums are built locally and merged under per-atom locks;
        contact candidates go to the (internally locked) pile.
        """
        st = self.structure
        cfg = self.config

        ijk = replica_offsets(start, stop, self.supercell)
        frac = (st.positions[None, :, :] + ijk[:, None, :]) / np.asarray(self.supercell, float)
        r = frac_to_cart(frac, self.sc_lat) - muon
        n = np.linalg.norm(r, axis=-1)

        rep, atom = np.nonzero(n < cfg.radius)
        if atom.size == 0:
            return 0
        r = r[rep, atom]
        n = n[rep, atom]
        if np.any(n == 0.0):
            raise ValueError(
                "Muon position coincides with a magnetic atom (zero distance); "
                "move the probe off the atom."
            )

        u = r / n[:, None]
        onebrcube = 1.0 / n**3

        # crysvec is measured from the reference copy of the atom (CHECK THIS DEFINITION)
        crysvec = cart_to_frac(r - helix.ref[atom], self.inv_cell)
        theta = 2.0 * np.pi * (crysvec @ st.k + st.phi[atom])
        c = np.cos(theta)[:, None]
        s = np.sin(theta)[:, None]

        A = helix.a[atom]
        B = helix.b[atom]
        dA = onebrcube[:, None] * (3.0 * np.einsum("ij,ij->i", A, u)[:, None] * u - A)
        dB = onebrcube[:, None] * (3.0 * np.einsum("ij,ij->i", B, u)[:, None] * u - B)

        cdip = c * dA + s * dB
        sdip = s * dA - c * dB
        clor = c * A + s * B
        slor = s * A - c * B

        part = np.zeros((4, st.natoms, 3), dtype=np.float64)
        np.add.at(part[0], atom, cdip)
        np.add.at(part[1], atom, sdip)
        np.add.at(part[2], atom, clor)
        np.add.at(part[3], atom, slor)

        for a in np.unique(atom):
            with dip_locks[a]:
                sums.cdip[a] += part[0, a]
                sums.sdip[a] += part[1, a]
            with lor_locks[a]:
                sums.clor[a] += part[2, a]
                sums.slor[a] += part[3, a]

        near = np.nonzero(n < cfg.cont_radius)[0]
        if near.size and pile.capacity:
            rank = n[near] ** cfg.cont_scaling_power
            m0 = helix.m0[atom[near]][:, None]
            vcos = m0 * clor[near]
            vsin = m0 * slor[near]
            # only the block's own best `capacity` can survive globally
            for idx in np.argsort(rank, kind="stable")[:pile.capacity]:
                pile.insert(rank[idx], np.stack((vcos[idx], vsin[idx])))

        return int(atom.size)

    def _reduce_lattice(self, helix: HelixBasis, muon: np.ndarray):
        natoms = self.structure.natoms
        cfg = self.config

        sums = HelixSums.zeros(natoms)
        dip_locks = [Lock() for _ in range(natoms)]
        lor_locks = [Lock() for _ in range(natoms)]
        pile = ContactPile(cfg.nnn_for_cont)

        worker = partial(
            self._reduce_block,
            helix=helix, muon=muon, sums=sums,
            dip_locks=dip_locks, lor_locks=lor_locks, pile=pile,
        )
        bs = int(cfg.block_size)
        bounds = [(lo, min(lo + bs, self.n_replicas)) for lo in range(0, self.n_replicas, bs)]

        with ThreadPoolExecutor(max_workers=cfg.n_workers) as pool:
            futures = [pool.submit(worker, lo, hi) for lo, hi in bounds]
            n_images = sum(f.result() for f in futures)

        if self.verbose:
            print(f"[reduce] {len(bounds)} blocks, {n_images} atom images inside the Lorentz sphere, "
                  f"{len(pile)} contact neighbours retained of {pile.seen} offered")
        return sums, pile, n_images

    #=============================================================================
    # Angle sweep
    #=============================================================================

    def _sweep_dipolar_lorentz(self, angles, helix: HelixBasis, sums: HelixSums):
        m0 = helix.m0
        dip_cs = (MU_B_FIELD * (m0 @ sums.cdip), MU_B_FIELD * (m0 @ sums.sdip))
        pref = self.config.lorentz_prefactor
        lor_cs = (pref * (m0 @ sums.clor), pref * (m0 @ sums.slor))

        cos_a = np.cos(angles)[:, None]
        sin_a = np.sin(angles)[:, None]
        dip = cos_a * dip_cs[0] - sin_a * dip_cs[1]
        lor = cos_a * lor_cs[0] - sin_a * lor_cs[1]
        return dip, lor, dip_cs, lor_cs

    def _sweep_contact(self, angles, pile: ContactPile):
        """Weighted (1/rank) average of the retained neighbours, swept over angle."""
        faults: List[Fault] = []
        cb = np.zeros(3, dtype=np.float64)
        sb = np.zeros(3, dtype=np.float64)
        weight = 0.0
        count = 0
        last = 0.0

        for i, (rank, value) in enumerate(pile.slots()):
            if rank < 0.0:
                continue
            if rank < last:
                faults.append(Fault(
                    "pile_rank_mismatch",
                    f"Contact neighbour {i} has rank {rank:e} below previous rank {last:e}",
                    magnitude=float(last - rank),
                ))
            last = max(last, rank)
            cb += value[0] / rank
            sb += value[1] / rank
            weight += 1.0 / rank
            count += 1

        if count == 0:
            zero = np.zeros(3, dtype=np.float64)
            cs = (zero, zero.copy())
        else:
            cs = (CONTACT_FACTOR / weight * cb, CONTACT_FACTOR / weight * sb)

        cont = np.cos(angles)[:, None] * cs[0] - np.sin(angles)[:, None] * cs[1]
        return cont, cs, count, faults

    def _sweep(self, helix, sums, pile, faults: List[Fault], n_images: int) -> FieldResult:
        nangles = int(self.config.nangles)
        angles = 2.0 * np.pi * np.arange(nangles, dtype=np.float64) / nangles

        with ThreadPoolExecutor(max_workers=2) as pool:
            f_field = pool.submit(self._sweep_dipolar_lorentz, angles, helix, sums)
            f_cont = pool.submit(self._sweep_contact, angles, pile)
            dip, lor, dip_cs, lor_cs = f_field.result()
            cont, cont_cs, n_contact, cont_faults = f_cont.result()

        for fault in cont_faults:
            self._report(faults, fault)

        if self.verbose:
            print(f"[sweep] {nangles} angles, contact field from {n_contact} neighbours")

        return FieldResult(
            angles=angles,
            contact=cont,
            dipolar=dip,
            lorentz=lor,
            coeffs={"contact": cont_cs, "dipolar": dip_cs, "lorentz": lor_cs},
            faults=faults,
            n_contact=n_contact,
            n_images=n_images,
        )

    def compute(self, muon_frac) -> FieldResult:
        """Contact, dipolar and Lorentz field curves at one muon site."""
        faults: List[Fault] = []
        helix = self._decompose_helix(faults)
        muon = self.muon_cartesian(muon_frac)
        if self.verbose:
            print(f"[lattice] muon (cart) = {muon}")
        sums, pile, n_images = self._reduce_lattice(helix, muon)
        return self._sweep(helix, sums, pile, faults, n_images)

    #=============================================================================
    # Static (commensurate) sum over several muon sites
    #=============================================================================

    def _simple_one(self, muon, min_radius: float, faults: List[Fault], probe: int):
        st = self.structure
        cfg = self.config
        dip = np.zeros(3, dtype=np.float64)
        lor = np.zeros(3, dtype=np.float64)
        pile = ContactPile(cfg.nnn_for_cont)
        n_close = 0
        d_close = np.inf

        bs = int(cfg.block_size)
        scale = np.asarray(self.supercell, float)
        for lo in range(0, self.n_replicas, bs):
            ijk = replica_offsets(lo, min(lo + bs, self.n_replicas), self.supercell)
            unit = st.positions[None, :, :] + ijk[:, None, :]
            r = frac_to_cart(unit / scale, self.sc_lat) - muon
            n = np.linalg.norm(r, axis=-1)

            close = n < min_radius
            if np.any(close):
                n_close += int(close.sum())
                d_close = min(d_close, float(n[close].min()))
            rep, atom = np.nonzero((n < cfg.radius) & ~close)
            if atom.size == 0:
                continue
            r = r[rep, atom]
            n = n[rep, atom]
            if np.any(n == 0.0):
                raise ValueError(
                    f"Muon {probe} coincides with a magnetic atom (zero distance)."
                )

            theta = 2.0 * np.pi * (unit[rep, atom] @ st.k + st.phi[atom])
            m = (st.fc_real[atom] * np.cos(theta)[:, None]
                 + st.fc_imag[atom] * np.sin(theta)[:, None])
            u = r / n[:, None]
            dip += np.sum(
                (3.0 * np.einsum("ij,ij->i", m, u)[:, None] * u - m) / n[:, None]**3, axis=0
            )
            lor += m.sum(axis=0)

            near = np.nonzero(n < cfg.cont_radius)[0]
            if near.size and pile.capacity:
                rank = n[near] ** cfg.cont_scaling_power
                for idx in np.argsort(rank, kind="stable")[:pile.capacity]:
                    pile.insert(rank[idx], m[near[idx]])

        if n_close:
            self._report(faults, Fault(
                "probe_too_close",
                f"Muon {probe} is {d_close:e} A from an atom ({n_close} images skipped)",
                magnitude=d_close,
            ))

        cont = np.zeros(3, dtype=np.float64)
        entries = pile.entries()
        if entries:
            weight = sum(1.0 / rank for rank, _ in entries)
            cont = CONTACT_FACTOR / weight * sum(value / rank for rank, value in entries)

        return cont, MU_B_FIELD * dip, cfg.lorentz_prefactor * lor

    def simple_fields(self, muon_positions, min_radius_from_atoms: float = 0.0) -> StaticFieldResult:
        """
        Static fields for each muon site, with moments
        Re(FC) cos(2 pi (K.R + phi)) + Im(FC) sin(2 pi (K.R + phi)).
        """
        probes = np.asarray(muon_positions, dtype=np.float64).reshape(-1, 3)
        faults: List[Fault] = []
        out = np.zeros((3, probes.shape[0], 3), dtype=np.float64)
        for p, mu in enumerate(probes):
            muon = self.muon_cartesian(mu)
            out[:, p] = self._simple_one(muon, float(min_radius_from_atoms), faults, p)
            if self.verbose:
                print(f"[simple] muon {p} at {mu}: Bdip = {out[1, p]}, Bcont = {out[0, p]}")
        return StaticFieldResult(
            probes=probes, contact=out[0], dipolar=out[1], lorentz=out[2], faults=faults,
        )

    # =============================================================================
    # Parallelization helpers
    # =============================================================================

    def process_one_task(self, task: Dict[str, Any], outdir: str | Path) -> Dict[str, Any]:
        outdir = str(outdir)
        Path(outdir).mkdir(parents=True, exist_ok=True)

        tag = task["tag"]
        muon = task.get("muon")
        if muon is None or len(muon) != 3:
            raise RuntimeError(f"Internal: task '{tag}' has no valid muon position")

        res = self.compute(muon)

        fname = f"fields_{tag}.dat"
        fpath = os.path.join(outdir, fname)
        res.to_dataframe().to_csv(fpath, index=False)

        cfg = self.config
        row = {
            "tag": tag,
            "mu_x": muon[0], "mu_y": muon[1], "mu_z": muon[2],
            "scx": self.supercell[0], "scy": self.supercell[1], "scz": self.supercell[2],
            "radius": cfg.radius,
            "cont_radius": cfg.cont_radius,
            "nnn_for_cont": cfg.nnn_for_cont,
            "nangles": cfg.nangles,
            "n_images": res.n_images,
            "n_contact": res.n_contact,
            "n_faults": len(res.faults),
            "bdip_max": float(np.linalg.norm(res.dipolar, axis=1).max()),
            "blor_max": float(np.linalg.norm(res.lorentz, axis=1).max()),
            "bcont_max": float(np.linalg.norm(res.contact, axis=1).max()),
            "field_file": fname,
        }
        print(
            f"Saved {fname} | tag={tag}, muon=({muon[0]},{muon[1]},{muon[2]}), "
            f"|Bdip|max={row['bdip_max']:.4e} T, faults={row['n_faults']}"
        )
        return row

    def run_in_parallel(self, tasks, outdir: str | Path, max_procs: int):
        outdir = str(outdir)
        Path(outdir).mkdir(parents=True, exist_ok=True)
        worker = partial(self.process_one_task, outdir=outdir)
        with Pool(processes=max_procs) as pool:
            for row in pool.imap_unordered(worker, tasks):
                yield row


# =============================================================================
# Flat-array entry points
# =============================================================================

def fast_incomm_sum(
    in_positions, in_fc, in_K, in_phi, in_muonpos, in_supercell, in_cell,
    radius: float, nnn_for_cont: int, cont_radius: float,
    in_natoms: int, in_nangles: int,
    *,
    eps: float = EPS,
    cont_scaling_power: float = CONT_SCALING_POWER,
    n_workers: Optional[int] = None,
    verbose: bool = False,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Contact, dipolar and Lorentz fields (tesla) of a helical structure at one
    muon site, sampled at in_nangles phase angles.

    Returns three flat arrays of length 3*in_nangles:
    (out_field_cont, out_field_dip, out_field_lor).
    """
    structure = MagneticStructure.from_flat(in_positions, in_fc, in_K, in_phi, in_cell, in_natoms)
    config = SumConfig(
        radius=radius,
        nnn_for_cont=nnn_for_cont,
        cont_radius=cont_radius,
        nangles=in_nangles,
        eps=eps,
        cont_scaling_power=cont_scaling_power,
        n_workers=n_workers,
    )
    solver = IncommensurateFieldSolver(structure, config, in_supercell, verbose=verbose)
    return solver.compute(in_muonpos).flat()


def simple_sum(
    in_positions, in_fc, in_K, in_phi, in_muonpos, in_supercell, in_cell,
    radius: float, nnn_for_cont: int, cont_radius: float,
    min_radius_from_atoms: float,
    in_natoms: int, in_nmuonpos: int,
    *,
    cont_scaling_power: float = CONT_SCALING_POWER,
    verbose: bool = False,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Static contact, dipolar and Lorentz fields, 3 values per muon site."""
    structure = MagneticStructure.from_flat(in_positions, in_fc, in_K, in_phi, in_cell, in_natoms)
    probes = np.asarray(in_muonpos, dtype=np.float64).reshape(-1, 3)
    if probes.shape[0] != int(in_nmuonpos):
        raise ValueError(f"in_nmuonpos={in_nmuonpos} but {probes.shape[0]} muon positions were given")
    config = SumConfig(
        radius=radius,
        nnn_for_cont=nnn_for_cont,
        cont_radius=cont_radius,
        cont_scaling_power=cont_scaling_power,
    )
    solver = IncommensurateFieldSolver(structure, config, in_supercell, verbose=verbose)
    return solver.simple_fields(probes, min_radius_from_atoms).flat()


#=====================================================================================================
# Task builder for parallel evaluation over muon sites
#=====================================================================================================

def make_tasks(probes: Iterable[Sequence[float]], tag: str = "mu") -> List[Dict[str, Any]]:
    tasks: List[Dict[str, Any]] = []
    for i, p in enumerate(probes):
        x, y, z = (float(v) for v in p)
        tasks.append({"tag": f"{tag}{i}", "muon": (x, y, z)})
    return tasks

def dump_tasks_tsv(tasks, path: str | Path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="") as f:
        w = csv.writer(f, delimiter="\t")
        w.writerow(["tag", "mu_x", "mu_y", "mu_z"])
        for t in tasks:
            x, y, z = t["muon"]
            w.writerow([t["tag"], repr(x), repr(y), repr(z)])

def load_tasks_tsv(path: str | Path):
    path = Path(path)
    tasks = []
    with path.open("r") as f:
        r = csv.DictReader(f, delimiter="\t")
        for row in r:
            tasks.append({
                "tag": row["tag"],
                "muon": (float(row["mu_x"]), float(row["mu_y"]), float(row["mu_z"])),
            })
    return tasks
