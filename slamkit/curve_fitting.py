"""Fitting y = exp(a x^2 + b x + c) to noisy samples by nonlinear least squares."""

from __future__ import annotations

import argparse
import math
import time
from dataclasses import dataclass

import numpy as np

_STEP_TOLERANCE = 1e-10
_GRADIENT_TOLERANCE = 1e-10
_INITIAL_DAMPING_SCALE = 1e-5
_MAX_DAMPING_TRIALS = 10


@dataclass(frozen=True)
class FitResult:
    """Estimated (a, b, c), final cost 0.5 * sum(residual^2), iterations run, and convergence."""

    abc: np.ndarray
    cost: float
    iterations: int
    converged: bool


def _data(x, y) -> tuple[np.ndarray, np.ndarray]:
    xs = np.asarray(x, dtype=float).reshape(-1)
    ys = np.asarray(y, dtype=float).reshape(-1)
    if xs.shape != ys.shape:
        raise ValueError(f"x and y differ in length: {xs.size} and {ys.size}")
    if xs.size == 0:
        raise ValueError("no data points given")
    return xs, ys


def _params(abc) -> np.ndarray:
    p = np.asarray(abc, dtype=float).reshape(-1)
    if p.shape != (3,):
        raise ValueError(f"expected three parameters, got shape {np.shape(abc)}")
    return p


def _model(abc: np.ndarray, x: np.ndarray) -> np.ndarray:
    a, b, c = abc
    with np.errstate(over="ignore"):
        return np.exp(a * x * x + b * x + c)


def _jacobian(abc: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Derivative of the residuals with respect to (a, b, c)."""
    f = _model(abc, x)
    return -f[:, None] * np.column_stack([x * x, x, np.ones_like(x)])


def residuals(abc, x, y) -> np.ndarray:
    """y - exp(a x^2 + b x + c) for every sample."""
    xs, ys = _data(x, y)
    return ys - _model(_params(abc), xs)


def _cost(abc: np.ndarray, x: np.ndarray, y: np.ndarray) -> float:
    r = y - _model(abc, x)
    with np.errstate(over="ignore", invalid="ignore"):
        value = 0.5 * float(np.sum(r * r))
    return value if math.isfinite(value) else math.inf


def generate_data(a=1.0, b=2.0, c=1.0, n=100, sigma=1.0, seed=0) -> tuple[np.ndarray, np.ndarray]:
    """Samples x = i/100, y = exp(a x^2 + b x + c) plus Gaussian noise of deviation sigma."""
    if n < 0:
        raise ValueError("the number of samples must not be negative")
    if sigma < 0:
        raise ValueError("the noise deviation must not be negative")
    x = np.arange(n) / 100.0
    noise = np.random.default_rng(seed).normal(0.0, sigma, size=n) if sigma > 0 else np.zeros(n)
    return x, np.exp(a * x * x + b * x + c) + noise


def fit_gauss_newton(x, y, initial=(0.0, 0.0, 0.0), iterations=100) -> FitResult:
    """Plain Gauss-Newton; stops when a step no longer lowers the cost."""
    xs, ys = _data(x, y)
    abc = _params(initial).copy()
    cost = _cost(abc, xs, ys)
    converged = False
    used = 0
    while used < iterations:
        used += 1
        r = ys - _model(abc, xs)
        jac = _jacobian(abc, xs)
        gradient = jac.T @ r
        if np.max(np.abs(gradient)) < _GRADIENT_TOLERANCE:
            converged = True
            break
        try:
            step = np.linalg.solve(jac.T @ jac, -gradient)
        except np.linalg.LinAlgError:
            break
        candidate = abc + step
        new_cost = _cost(candidate, xs, ys)
        if not new_cost <= cost:
            converged = math.isfinite(new_cost) and new_cost - cost <= 1e-12 * max(cost, 1.0)
            break
        abc, cost = candidate, new_cost
        if np.linalg.norm(step) < _STEP_TOLERANCE * (np.linalg.norm(abc) + _STEP_TOLERANCE):
            converged = True
            break
    return FitResult(abc, cost, used, converged)


def fit_levenberg_marquardt(x, y, initial=(0.0, 0.0, 0.0), iterations=100, sigma=1.0) -> FitResult:
    """Levenberg-Marquardt with every residual weighted by 1 / sigma^2."""
    if sigma <= 0:
        raise ValueError("sigma must be positive")
    xs, ys = _data(x, y)
    abc = _params(initial).copy()
    weight = 1.0 / (sigma * sigma)
    weighted_cost = weight * _cost(abc, xs, ys)
    damping = None
    nu = 2.0
    converged = False
    used = 0
    while used < iterations and math.isfinite(weighted_cost):
        used += 1
        r = ys - _model(abc, xs)
        jac = _jacobian(abc, xs)
        hessian = weight * (jac.T @ jac)
        gradient = weight * (jac.T @ r)
        if np.max(np.abs(gradient)) < _GRADIENT_TOLERANCE:
            converged = True
            break
        if damping is None:
            damping = _INITIAL_DAMPING_SCALE * max(float(np.diag(hessian).max()), 1e-12)
        accepted = False
        step = np.zeros(3)
        for _ in range(_MAX_DAMPING_TRIALS):
            try:
                step = np.linalg.solve(hessian + damping * np.eye(3), -gradient)
            except np.linalg.LinAlgError:
                damping *= nu
                nu *= 2.0
                continue
            candidate = abc + step
            new_cost = weight * _cost(candidate, xs, ys)
            predicted = 0.5 * float(step @ (damping * step - gradient))
            rho = (weighted_cost - new_cost) / predicted if predicted > 0 else -1.0
            if math.isfinite(new_cost) and rho > 0:
                abc, weighted_cost = candidate, new_cost
                damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                accepted = True
                break
            damping *= nu
            nu *= 2.0
        if not accepted:
            converged = True
            break
        if np.linalg.norm(step) < _STEP_TOLERANCE * (np.linalg.norm(abc) + _STEP_TOLERANCE):
            converged = True
            break
    return FitResult(abc, _cost(abc, xs, ys), used, converged)


def main(argv: list[str] | None = None) -> int:
    """Generate noisy samples of a known curve and estimate its parameters."""
    parser = argparse.ArgumentParser(prog="curve-fitting", description=__doc__)
    parser.add_argument(
        "--method",
        choices=("levenberg-marquardt", "gauss-newton"),
        default="levenberg-marquardt",
    )
    parser.add_argument("--points", type=int, default=100, help="number of samples")
    parser.add_argument("--sigma", type=float, default=1.0, help="noise deviation")
    parser.add_argument("--seed", type=int, default=0, help="random seed")
    parser.add_argument("--iterations", type=int, default=100)
    args = parser.parse_args(argv)
    if args.points < 1:
        parser.error("--points must be positive")
    if args.sigma <= 0:
        parser.error("--sigma must be positive")

    print("generating data: ")
    x, y = generate_data(1.0, 2.0, 1.0, args.points, args.sigma, args.seed)
    for xi, yi in zip(x, y):
        print(f"{xi:g} {yi:g}")

    start = time.perf_counter()
    if args.method == "gauss-newton":
        result = fit_gauss_newton(x, y, (0.0, 0.0, 0.0), args.iterations)
    else:
        result = fit_levenberg_marquardt(x, y, (0.0, 0.0, 0.0), args.iterations, args.sigma)
    elapsed = time.perf_counter() - start
    print(f"solve time cost = {elapsed:g} seconds. ")
    print(
        f"iterations: {result.iterations}, final cost: {result.cost:g}, "
        f"converged: {'yes' if result.converged else 'no'}"
    )
    print("estimated a,b,c = " + " ".join(f"{v:g}" for v in result.abc))
    return 0