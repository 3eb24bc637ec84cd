"""Dense depth estimation for a monocular camera moving along a known trajectory.

Every reference pixel keeps a Gaussian depth estimate. For each new frame the pixel is
searched along its epipolar line with zero-mean NCC, triangulated, and fused.
"""

from __future__ import annotations

import argparse
import math
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.geometry import Quaternion
from slamkit.lie import SE3, SO3

DATASET_INDEX = "first_200_frames_traj_over_table_input_sequence.txt"
NCC_WINDOW = 2
NCC_AREA = (2 * NCC_WINDOW + 1) ** 2
NCC_THRESHOLD = 0.85
SEARCH_STEP = 0.7
MAX_HALF_LENGTH = 100.0
MIN_SEARCH_DEPTH = 0.1
INIT_DEPTH = 3.0
INIT_COV2 = 3.0
MIN_COV = 0.1
MAX_COV = 10.0

_OFFSETS = np.array(
    [(dx, dy) for dx in range(-NCC_WINDOW, NCC_WINDOW + 1) for dy in range(-NCC_WINDOW, NCC_WINDOW + 1)],
    dtype=float,
)


def _vec(v, n: int) -> np.ndarray:
    a = np.asarray(v, dtype=float).reshape(-1)
    if a.shape != (n,):
        raise ValueError(f"expected a {n}-vector, got shape {np.shape(v)}")
    return a


@dataclass(frozen=True)
class Camera:
    """Pinhole intrinsics, image size and the width of the border that is never searched."""

    fx: float = 481.2
    fy: float = -480.0
    cx: float = 319.5
    cy: float = 239.5
    width: int = 640
    height: int = 480
    border: int = 20

    def px2cam(self, px) -> np.ndarray:
        """Pixel to a point on the normalized image plane (z = 1)."""
        x, y = _vec(px, 2)
        return np.array([(x - self.cx) / self.fx, (y - self.cy) / self.fy, 1.0])

    def cam2px(self, p) -> np.ndarray:
        """Camera-frame point to pixel coordinates."""
        x, y, z = _vec(p, 3)
        return np.array([x * self.fx / z + self.cx, y * self.fy / z + self.cy])

    def inside(self, pt) -> bool:
        """Whether a pixel lies inside the image, away from the border."""
        return bool(self._inside_many(_vec(pt, 2)[None, :])[0])

    def _inside_many(self, pts: np.ndarray) -> np.ndarray:
        x, y = pts[:, 0], pts[:, 1]
        b = self.border
        with np.errstate(invalid="ignore"):
            return (x >= b) & (y >= b) & (x + b < self.width) & (y + b <= self.height)


def _bilinear_many(img, pts: np.ndarray) -> np.ndarray:
    image = np.asarray(img, dtype=float)
    x, y = pts[..., 0], pts[..., 1]
    ix, iy = x.astype(np.int64), y.astype(np.int64)
    xx, yy = x - np.floor(x), y - np.floor(y)
    return (
        (1 - xx) * (1 - yy) * image[iy, ix]
        + xx * (1 - yy) * image[iy, ix + 1]
        + (1 - xx) * yy * image[iy + 1, ix]
        + xx * yy * image[iy + 1, ix + 1]
    ) / 255.0


def bilinear(img, pt) -> float:
    """Grey value (scaled to [0, 1]) of a greyscale image at a sub-pixel position."""
    return float(_bilinear_many(img, _vec(pt, 2)[None, :])[0])


def _ncc_many(ref, curr, pt_ref, candidates: np.ndarray) -> np.ndarray:
    reference = np.asarray(ref, dtype=float)
    ref_pts = _vec(pt_ref, 2) + _OFFSETS
    values_ref = reference[ref_pts[:, 1].astype(np.int64), ref_pts[:, 0].astype(np.int64)] / 255.0
    values_curr = _bilinear_many(curr, candidates[:, None, :] + _OFFSETS[None, :, :])
    d_ref = values_ref - values_ref.sum() / NCC_AREA
    d_curr = values_curr - (values_curr.sum(axis=1) / NCC_AREA)[:, None]
    numerator = d_curr @ d_ref
    denominator1 = float(d_ref @ d_ref)
    denominator2 = np.einsum("ij,ij->i", d_curr, d_curr)
    return numerator / np.sqrt(denominator1 * denominator2 + 1e-10)


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalized cross-correlation of 5x5 windows around pt_ref and pt_curr."""
    return float(_ncc_many(ref, curr, pt_ref, _vec(pt_curr, 2)[None, :])[0])


def _search_offsets(half_length: float) -> np.ndarray:
    offsets = []
    l = -half_length
    while l <= half_length:
        offsets.append(l)
        l += SEARCH_STEP
    return np.array(offsets, dtype=float)


def _unit(v: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    return v / norm if norm > 0 else v


def _clamped_acos(value: float) -> float:
    return math.acos(max(-1.0, min(1.0, value)))


class DepthFilter:
    """Per-pixel depth means and variances for one reference frame."""

    def __init__(
        self,
        camera: Camera | None = None,
        init_depth: float = INIT_DEPTH,
        init_cov2: float = INIT_COV2,
        min_cov: float = MIN_COV,
        max_cov: float = MAX_COV,
    ) -> None:
        self.camera = Camera() if camera is None else camera
        self.min_cov = min_cov
        self.max_cov = max_cov
        shape = (self.camera.height, self.camera.width)
        self.depth = np.full(shape, float(init_depth))
        self.depth_cov = np.full(shape, float(init_cov2))

    def epipolar_search(self, ref, curr, T_C_R: SE3, pt_ref, depth_mu: float, depth_sigma: float):
        """Best NCC match of pt_ref along its epipolar segment in curr, or None below threshold."""
        cam = self.camera
        f_ref = _unit(cam.px2cam(pt_ref))
        with np.errstate(divide="ignore", invalid="ignore"):
            px_mean = cam.cam2px(T_C_R.transform(f_ref * depth_mu))
            d_min = max(depth_mu - 3 * depth_sigma, MIN_SEARCH_DEPTH)
            d_max = depth_mu + 3 * depth_sigma
            px_min = cam.cam2px(T_C_R.transform(f_ref * d_min))
            px_max = cam.cam2px(T_C_R.transform(f_ref * d_max))
            line = px_max - px_min
            direction = _unit(line)
            half_length = min(0.5 * float(np.linalg.norm(line)), MAX_HALF_LENGTH)
            candidates = px_mean + _search_offsets(half_length)[:, None] * direction
        candidates = candidates[cam._inside_many(candidates)]
        if len(candidates) == 0:
            return None
        scores = _ncc_many(ref, curr, pt_ref, candidates)
        best = int(np.argmax(scores))
        if not scores[best] > -1.0 or scores[best] < NCC_THRESHOLD:
            return None
        return candidates[best].copy()

    def update_pixel(self, pt_ref, pt_curr, T_C_R: SE3):
        """Triangulate a match and fuse it into the pixel's estimate.

        Returns the fused (depth, variance), or None when the geometry is degenerate,
        in which case the maps are left unchanged.
        """
        cam = self.camera
        T_R_C = T_C_R.inverse()
        f_ref = _unit(cam.px2cam(pt_ref))
        f_curr = _unit(cam.px2cam(pt_curr))
        t = np.asarray(T_R_C.translation, dtype=float)
        f2 = np.asarray(T_R_C.rotation.matrix, dtype=float) @ f_curr
        b0, b1 = float(t @ f_ref), float(t @ f2)
        a0 = float(f_ref @ f_ref)
        a2 = float(f_ref @ f2)
        a1 = -a2
        a3 = -float(f2 @ f2)
        det = a0 * a3 - a1 * a2
        t_norm = float(np.linalg.norm(t))
        if det == 0.0 or t_norm == 0.0:
            return None
        lambda0 = (a3 * b0 - a1 * b1) / det
        lambda1 = (-a2 * b0 + a0 * b1) / det
        xm = lambda0 * f_ref
        xn = t + lambda1 * f2
        depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

        a = f_ref * depth_estimation - t
        a_norm = float(np.linalg.norm(a))
        if a_norm == 0.0:
            return None
        alpha = _clamped_acos(float(f_ref @ t) / t_norm)
        beta = _clamped_acos(float(-a @ t) / (a_norm * t_norm))
        beta_prime = beta + math.atan(1.0 / cam.fx)
        gamma = math.pi - alpha - beta_prime
        if math.sin(gamma) == 0.0:
            return None
        p_prime = t_norm * math.sin(beta_prime) / math.sin(gamma)
        d_cov2 = (p_prime - depth_estimation) ** 2

        x, y = _vec(pt_ref, 2).astype(np.int64)
        mu = self.depth[y, x]
        sigma2 = self.depth_cov[y, x]
        mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
        sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)
        if not (math.isfinite(mu_fuse) and math.isfinite(sigma_fuse2)):
            return None
        self.depth[y, x] = mu_fuse
        self.depth_cov[y, x] = sigma_fuse2
        return float(mu_fuse), float(sigma_fuse2)

    def update(self, ref, curr, T_C_R: SE3) -> int:
        """Search and fuse every pixel that has neither converged nor diverged.

        Returns the number of pixels whose estimate was updated.
        """
        cam = self.camera
        reference = np.asarray(ref, dtype=float)
        current = np.asarray(curr, dtype=float)
        expected = (cam.height, cam.width)
        if reference.shape != expected or current.shape != expected:
            raise ValueError(
                f"images must be greyscale of shape {expected}, got {reference.shape} and {current.shape}"
            )
        updated = 0
        for x in range(cam.border, cam.width - cam.border):
            for y in range(cam.border, cam.height - cam.border):
                cov = self.depth_cov[y, x]
                if cov < self.min_cov or cov > self.max_cov:
                    continue
                pt_ref = np.array([x, y], dtype=float)
                pt_curr = self.epipolar_search(
                    reference, current, T_C_R, pt_ref, self.depth[y, x], math.sqrt(cov)
                )
                if pt_curr is None:
                    continue
                if self.update_pixel(pt_ref, pt_curr, T_C_R) is not None:
                    updated += 1
        return updated


def read_dataset_files(path) -> tuple[list[Path], list[SE3]]:
    """Image paths and camera-to-world poses listed in the dataset's index file.

    Each record is an image name followed by tx ty tz qx qy qz qw.
    """
    base = Path(path)
    tokens = (base / DATASET_INDEX).read_text().split()
    if len(tokens) % 8:
        raise ValueError("dataset index holds an incomplete record")
    files: list[Path] = []
    poses: list[SE3] = []
    for start in range(0, len(tokens), 8):
        name, *numbers = tokens[start : start + 8]
        tx, ty, tz, qx, qy, qz, qw = (float(n) for n in numbers)
        norm = math.sqrt(qw * qw + qx * qx + qy * qy + qz * qz)
        if norm == 0.0:
            raise ValueError(f"pose of {name} has a zero quaternion")
        rotation = Quaternion(qw / norm, qx / norm, qy / norm, qz / norm).matrix()
        files.append(base / "images" / name)
        poses.append(SE3(SO3(rotation), np.array([tx, ty, tz])))
    return files, poses


def _load_gray(path: Path) -> np.ndarray | None:
    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"))
    except OSError:
        return None


def main(argv: list[str] | None = None) -> int:
    """Estimate the depth map of the first frame of a dataset and save it as an image."""
    parser = argparse.ArgumentParser(prog="dense-mapping", description=__doc__)
    parser.add_argument("dataset", help="path to the dataset directory")
    parser.add_argument("--output", default="depth.png", help="where to save the depth map")
    args = parser.parse_args(argv)

    try:
        files, poses = read_dataset_files(args.dataset)
    except (OSError, ValueError):
        print("Reading image files failed!")
        return 1
    if not files:
        print("Reading image files failed!")
        return 1
    print(f"read total {len(files)} files.")

    ref = _load_gray(files[0])
    if ref is None:
        print(f"cannot read the reference image {files[0]}", file=sys.stderr)
        return 1
    pose_ref = poses[0]
    depth_filter = DepthFilter()
    for index in range(1, len(files)):
        print(f"*** loop {index} ***")
        curr = _load_gray(files[index])
        if curr is None:
            continue
        T_C_R = poses[index].inverse() * pose_ref
        depth_filter.update(ref, curr, T_C_R)

    print("estimation returns, saving depth map ...")
    image = np.clip(np.rint(depth_filter.depth), 0, 255).astype(np.uint8)
    Image.fromarray(image).save(args.output)
    print("done.")
    return 0