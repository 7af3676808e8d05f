import numpy as np


# =============================================================================
# Coordinate conversion utilities
# =============================================================================
# Row-vector convention throughout: cart = frac @ cell, cell rows are a, b, c.

def as_cell(in_cell) -> np.ndarray:
    """9 reals (a_x, a_y, a_z, b_x, ..., c_z) or a 3x3 array -> 3x3 float array."""
    cell = np.asarray(in_cell, dtype=np.float64).reshape(3, 3)
    if abs(np.linalg.det(cell)) < 1e-12:
        raise ValueError("Lattice cell is singular (zero volume).")
    return cell


def frac_to_cart(frac: np.ndarray, lat_vecs: np.ndarray) -> np.ndarray:
    """Convert fractional to Cartesian coordinates."""
    return frac @ lat_vecs


def cart_to_frac(cart: np.ndarray, inv_lat_vecs: np.ndarray) -> np.ndarray:
    """Convert Cartesian to fractional coordinates with a precomputed inverse cell."""
    return cart @ inv_lat_vecs


def supercell_lattice(cell: np.ndarray, supercell) -> np.ndarray:
    """diag(scx, scy, scz) @ cell: lattice vectors of the whole supercell."""
    return np.diag(np.asarray(supercell, dtype=np.float64)) @ cell


def centred_fractional(frac: np.ndarray, supercell) -> np.ndarray:
    """
    Map unit-cell fractional coordinates into the supercell frame, shifted to
    the unit cell sitting at (scx//2, scy//2, scz//2).
    """
    sc = np.asarray(supercell, dtype=np.int64)
    return (np.asarray(frac, dtype=np.float64) + sc // 2) / sc


def replica_offsets(start: int, stop: int, supercell) -> np.ndarray:
    """(i, j, k) triples for flat replica indices [start, stop), C order."""
    idx = np.arange(start, stop)
    i, j, k = np.unravel_index(idx, tuple(int(s) for s in supercell))
    return np.column_stack((i, j, k)).astype(np.float64)
