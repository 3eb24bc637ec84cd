"""Basic dense linear algebra: matrix summaries, symmetric eigenproblems and linear solves."""

from __future__ import annotations

import argparse
import time

import numpy as np

MATRIX_SIZE = 50


def _square(matrix) -> np.ndarray:
    a = np.asarray(matrix, dtype=float)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError(f"expected a square matrix, got shape {a.shape}")
    return a


def _system(matrix, rhs) -> tuple[np.ndarray, np.ndarray]:
    a = _square(matrix)
    b = np.asarray(rhs, dtype=float)
    if b.shape[0] != a.shape[0]:
        raise ValueError(
            f"right-hand side has {b.shape[0]} rows, matrix has {a.shape[0]}"
        )
    return a, b


def matrix_report(matrix) -> dict[str, object]:
    """Return the transpose, element sum, trace, tenfold scaling, inverse and determinant."""
    a = _square(matrix)
    diagonal_sum = float(a.diagonal().sum())
    return {
        "transpose": a.T.copy(),
        "sum": float(a.sum()),
        "trace": diagonal_sum,
        "scaled": 10 * a,
        "inverse": np.linalg.inv(a),
        "determinant": float(np.linalg.det(a)),
    }


def symmetric_eigen(matrix) -> tuple[np.ndarray, np.ndarray]:
    """Eigenvalues (ascending) and eigenvectors (as columns) of a real symmetric matrix."""
    a = _square(matrix)
    if not np.allclose(a, a.T):
        raise ValueError("matrix is not symmetric")
    values, vectors = np.linalg.eigh(a)
    return values, vectors


def solve_by_inverse(matrix, rhs) -> np.ndarray:
    """Solve matrix @ x = rhs by forming the inverse explicitly."""
    a, b = _system(matrix, rhs)
    return np.linalg.inv(a) @ b


def solve_by_qr(matrix, rhs) -> np.ndarray:
    """Solve matrix @ x = rhs through a QR decomposition."""
    a, b = _system(matrix, rhs)
    q, r = np.linalg.qr(a)
    diagonal = np.abs(np.diag(r))
    scale = diagonal.max() if diagonal.size else 0.0
    if diagonal.size and (scale == 0.0 or diagonal.min() <= 1e-12 * scale):
        raise np.linalg.LinAlgError("matrix is singular")
    return np.linalg.solve(r, q.T @ b)


def _show(value) -> str:
    return np.array2string(np.asarray(value), precision=6, suppress_small=True)


def main(argv: list[str] | None = None) -> int:
    """Walk through the basic matrix operations and time two ways of solving a system."""
    parser = argparse.ArgumentParser(prog="linalg-demo", description=__doc__)
    parser.add_argument("--size", type=int, default=MATRIX_SIZE, help="size of the timed system")
    parser.add_argument("--seed", type=int, default=None, help="random seed")
    args = parser.parse_args(argv)
    if args.size < 1:
        parser.error("--size must be positive")

    matrix_23 = np.array([[1, 2, 3], [4, 5, 6]], dtype=np.float32)
    print(_show(matrix_23))
    for row in matrix_23:
        print("".join(f"{value:g}\t" for value in row))

    v_3d = np.array([3.0, 2.0, 1.0])
    vd_3d = np.array([4, 5, 6], dtype=np.float32)
    print(_show(matrix_23.astype(float) @ v_3d))
    print(_show(matrix_23 @ vd_3d))

    rng = np.random.default_rng(args.seed)
    matrix_33 = rng.uniform(-1.0, 1.0, size=(3, 3))
    print(_show(matrix_33))
    print()
    report = matrix_report(matrix_33)
    for key in ("transpose", "sum", "trace", "scaled", "inverse", "determinant"):
        print(_show(report[key]))

    values, vectors = symmetric_eigen(matrix_33.T @ matrix_33)
    print("Eigen values = \n" + _show(values))
    print("Eigen vectors = \n" + _show(vectors))

    matrix_nn = rng.uniform(-1.0, 1.0, size=(args.size, args.size))
    v_nd = rng.uniform(-1.0, 1.0, size=args.size)

    start = time.perf_counter()
    solve_by_inverse(matrix_nn, v_nd)
    elapsed = 1000 * (time.perf_counter() - start)
    print(f"time use in normal inverse is {elapsed:g}ms")

    start = time.perf_counter()
    solve_by_qr(matrix_nn, v_nd)
    elapsed = 1000 * (time.perf_counter() - start)
    print(f"time use in Qr decomposition is {elapsed:g}ms")
    return 0