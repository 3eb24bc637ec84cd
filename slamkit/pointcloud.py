"""Coloured point clouds from RGB-D frames: back-projection, filtering and binary PCD files."""

from __future__ import annotations

import argparse
import math
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.geometry import Quaternion

FRAME_COUNT = 5
FILTER_MAX_DEPTH = 7000
FILTER_MEAN_K = 50
FILTER_STDDEV_MUL = 1.0
FILTER_LEAF_SIZE = 0.01
_CHUNK = 512

_PCD_TYPES = {
    ("F", 4): "<f4",
    ("F", 8): "<f8",
    ("U", 1): "u1",
    ("U", 2): "<u2",
    ("U", 4): "<u4",
    ("U", 8): "<u8",
    ("I", 1): "i1",
    ("I", 2): "<i2",
    ("I", 4): "<i4",
    ("I", 8): "<i8",
}


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics and the number of raw depth units per metre."""

    cx: float = 325.5
    cy: float = 253.5
    fx: float = 518.0
    fy: float = 519.0
    depth_scale: float = 1000.0


@dataclass(frozen=True, eq=False)
class PointCloud:
    """Points (Nx3, float) with RGB colours (Nx3, uint8)."""

    points: np.ndarray
    colors: np.ndarray

    def __post_init__(self) -> None:
        pts = np.asarray(self.points, dtype=float).reshape(-1, 3)
        cols = np.asarray(self.colors, dtype=np.uint8).reshape(-1, 3)
        if len(pts) != len(cols):
            raise ValueError(f"{len(pts)} points but {len(cols)} colours")
        object.__setattr__(self, "points", pts)
        object.__setattr__(self, "colors", cols)

    @classmethod
    def empty(cls) -> PointCloud:
        return cls(np.zeros((0, 3)), np.zeros((0, 3), dtype=np.uint8))

    def __len__(self) -> int:
        return len(self.points)

    def __add__(self, other):
        if not isinstance(other, PointCloud):
            return NotImplemented
        return PointCloud(
            np.vstack([self.points, other.points]), np.vstack([self.colors, other.colors])
        )


def pose_matrix(values) -> np.ndarray:
    """4x4 camera-to-world transform from (tx, ty, tz, qx, qy, qz, qw)."""
    v = np.asarray(values, dtype=float).reshape(-1)
    if v.shape != (7,):
        raise ValueError(f"a pose needs 7 values, got {v.size}")
    tx, ty, tz, qx, qy, qz, qw = v
    norm = math.sqrt(qw * qw + qx * qx + qy * qy + qz * qz)
    if norm == 0.0:
        raise ValueError("pose quaternion must be non-zero")
    q = Quaternion(qw / norm, qx / norm, qy / norm, qz / norm)
    m = np.eye(4)
    m[:3, :3] = q.matrix()
    m[:3, 3] = (tx, ty, tz)
    return m


def read_poses(path, count=FRAME_COUNT) -> list[np.ndarray]:
    """Read ``count`` poses, 7 whitespace-separated numbers each, from a text file."""
    values = [float(token) for token in Path(path).read_text().split()]
    if len(values) < 7 * count:
        raise ValueError(f"{path} holds {len(values)} numbers, {7 * count} needed")
    return [pose_matrix(values[7 * i : 7 * i + 7]) for i in range(count)]


def rgbd_to_points(color, depth, pose, intrinsics=Intrinsics(), max_depth=None) -> PointCloud:
    """World points of every pixel with non-zero raw depth (and below ``max_depth`` if given).

    ``color`` is an HxWx3 RGB image (greyscale is accepted), ``depth`` holds raw depth units.
    """
    col = np.asarray(color)
    if col.ndim == 2:
        col = np.stack([col] * 3, axis=-1)
    if col.ndim != 3 or col.shape[2] < 3:
        raise ValueError(f"expected a colour image, got shape {col.shape}")
    d = np.asarray(depth).astype(float)
    if d.shape != col.shape[:2]:
        raise ValueError(f"depth shape {d.shape} does not match colour shape {col.shape[:2]}")
    t = np.asarray(pose, dtype=float)
    if t.shape != (4, 4):
        raise ValueError(f"expected a 4x4 pose, got shape {t.shape}")
    valid = d != 0
    if max_depth is not None:
        valid &= d < max_depth
    v, u = np.nonzero(valid)
    z = d[v, u] / intrinsics.depth_scale
    cam = np.column_stack(
        [(u - intrinsics.cx) * z / intrinsics.fx, (v - intrinsics.cy) * z / intrinsics.fy, z]
    )
    world = cam @ t[:3, :3].T + t[:3, 3]
    return PointCloud(world, col[v, u, :3].astype(np.uint8))


def _mean_neighbour_distances(points: np.ndarray, k: int) -> np.ndarray:
    n = len(points)
    squares = np.einsum("ij,ij->i", points, points)
    out = np.empty(n)
    for start in range(0, n, _CHUNK):
        stop = min(start + _CHUNK, n)
        d2 = squares[start:stop, None] + squares[None, :] - 2.0 * (points[start:stop] @ points.T)
        np.maximum(d2, 0.0, out=d2)
        rows = np.arange(stop - start)
        d2[rows, rows + start] = -1.0
        nearest = np.partition(d2, k, axis=1)[:, : k + 1]
        nearest.sort(axis=1)
        out[start:stop] = np.sqrt(nearest[:, 1:]).mean(axis=1)
    return out


def statistical_outlier_removal(cloud, mean_k=FILTER_MEAN_K, stddev_mul=FILTER_STDDEV_MUL) -> PointCloud:
    """Drop points whose mean distance to their ``mean_k`` nearest neighbours exceeds
    the mean of those distances by more than ``stddev_mul`` standard deviations."""
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    n = len(cloud)
    if n < 2:
        return PointCloud(cloud.points.copy(), cloud.colors.copy())
    distances = _mean_neighbour_distances(cloud.points, min(mean_k, n - 1))
    mean = distances.mean()
    stddev = math.sqrt(float(np.sum((distances - mean) ** 2)) / (n - 1))
    keep = distances <= mean + stddev_mul * stddev
    return PointCloud(cloud.points[keep], cloud.colors[keep])


def voxel_filter(cloud, leaf_size=FILTER_LEAF_SIZE) -> PointCloud:
    """Replace the points of every occupied voxel by their centroid and mean colour."""
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=float), (3,))
    if np.any(leaf <= 0):
        raise ValueError("leaf size must be positive")
    if len(cloud) == 0:
        return PointCloud.empty()
    index = np.floor(cloud.points * (1.0 / leaf)).astype(np.int64)
    _, inverse = np.unique(index[:, ::-1], axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    count = np.bincount(inverse)
    point_sums = np.zeros((len(count), 3))
    color_sums = np.zeros((len(count), 3))
    np.add.at(point_sums, inverse, cloud.points)
    np.add.at(color_sums, inverse, cloud.colors.astype(float))
    colors = np.floor(color_sums / count[:, None]).astype(np.uint8)
    return PointCloud(point_sums / count[:, None], colors)


def write_pcd_binary(cloud, path) -> None:
    """Write x, y, z and packed rgb of every point as a binary PCD file."""
    n = len(cloud)
    header = (
        "# .PCD v0.7 - Point Cloud Data file format\n"
        "VERSION 0.7\n"
        "FIELDS x y z rgb\n"
        "SIZE 4 4 4 4\n"
        "TYPE F F F F\n"
        "COUNT 1 1 1 1\n"
        f"WIDTH {n}\n"
        "HEIGHT 1\n"
        "VIEWPOINT 0 0 0 1 0 0 0\n"
        f"POINTS {n}\n"
        "DATA binary\n"
    )
    record = np.zeros(n, dtype=[("x", "<f4"), ("y", "<f4"), ("z", "<f4"), ("rgb", "<u4")])
    record["x"], record["y"], record["z"] = cloud.points.T
    rgb = cloud.colors.astype(np.uint32)
    record["rgb"] = (np.uint32(255) << 24) | (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]
    with open(path, "wb") as handle:
        handle.write(header.encode("ascii"))
        handle.write(record.tobytes())


def read_pcd_binary(path) -> PointCloud:
    """Read a binary PCD file with x, y, z and optionally rgb fields."""
    raw = Path(path).read_bytes()
    header: dict[str, list[str]] = {}
    offset = 0
    while True:
        end = raw.find(b"\n", offset)
        if end < 0:
            raise ValueError("PCD header has no DATA line")
        line = raw[offset:end].decode("ascii").strip()
        offset = end + 1
        if not line or line.startswith("#"):
            continue
        key, *values = line.split()
        header[key.upper()] = values
        if key.upper() == "DATA":
            break
    if header["DATA"] != ["binary"]:
        raise ValueError(f"unsupported PCD data format: {' '.join(header['DATA'])}")
    try:
        fields = header["FIELDS"]
        sizes = [int(s) for s in header["SIZE"]]
        types = header["TYPE"]
    except KeyError as exc:
        raise ValueError(f"PCD header lacks {exc.args[0]}") from None
    counts = [int(c) for c in header.get("COUNT", ["1"] * len(fields))]
    if not len(fields) == len(sizes) == len(types) == len(counts):
        raise ValueError("PCD header field descriptions disagree in length")
    if not {"x", "y", "z"} <= set(fields):
        raise ValueError("PCD file has no x, y, z fields")
    if "POINTS" in header:
        n = int(header["POINTS"][0])
    else:
        n = int(header["WIDTH"][0]) * int(header.get("HEIGHT", ["1"])[0])
    dtype_fields = []
    for index, (name, size, kind, count) in enumerate(zip(fields, sizes, types, counts)):
        if name == "rgb" and size == 4:
            code = "<u4"
        else:
            code = _PCD_TYPES.get((kind.upper(), size))
            if code is None:
                raise ValueError(f"unsupported PCD field type {kind}{size}")
        label = name if name != "_" else f"_pad{index}"
        dtype_fields.append((label, code) if count == 1 else (label, code, (count,)))
    dtype = np.dtype(dtype_fields)
    if len(raw) - offset < n * dtype.itemsize:
        raise ValueError("PCD file is truncated")
    record = np.frombuffer(raw, dtype=dtype, count=n, offset=offset)
    points = np.column_stack([record["x"], record["y"], record["z"]]).astype(float)
    if "rgb" in fields:
        rgb = record["rgb"].astype(np.uint32)
        colors = np.column_stack([(rgb >> 16) & 255, (rgb >> 8) & 255, rgb & 255])
    else:
        colors = np.zeros((n, 3))
    return PointCloud(points, colors.astype(np.uint8))


def _load_color(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGB"))


def _load_depth(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img).astype(np.int64)


def join_map(directory=".", max_depth=None, filtered=False) -> PointCloud:
    """Merge the frames color/N.png, depth/N.pgm (N = 1..5) posed by pose.txt into one cloud.

    With ``filtered``, depths of 7000 or more are dropped, each frame gets statistical
    outlier removal and the merged cloud is voxel-filtered.
    """
    base = Path(directory)
    pose_file = base / "pose.txt"
    if not pose_file.is_file():
        raise FileNotFoundError(f"cannot find pose file {pose_file}")
    poses = read_poses(pose_file, FRAME_COUNT)
    if filtered and max_depth is None:
        max_depth = FILTER_MAX_DEPTH
    cloud = PointCloud.empty()
    for number, pose in enumerate(poses, start=1):
        color = _load_color(base / "color" / f"{number}.png")
        depth = _load_depth(base / "depth" / f"{number}.pgm")
        current = rgbd_to_points(color, depth, pose, Intrinsics(), max_depth)
        if filtered:
            current = statistical_outlier_removal(current, FILTER_MEAN_K, FILTER_STDDEV_MUL)
        cloud = cloud + current
    if filtered:
        cloud = voxel_filter(cloud, FILTER_LEAF_SIZE)
    return cloud


def main(argv: list[str] | None = None) -> int:
    """Build a point cloud map from posed RGB-D frames and save it as binary PCD."""
    parser = argparse.ArgumentParser(prog="join-map", description=__doc__)
    parser.add_argument("directory", nargs="?", default=".", help="directory holding pose.txt")
    parser.add_argument("--output", default="map.pcd", help="output PCD file")
    parser.add_argument("--filtered", action="store_true", help="apply depth, outlier and voxel filters")
    parser.add_argument("--max-depth", type=float, default=None, help="drop raw depths at or above this")
    args = parser.parse_args(argv)

    print("converting images to a point cloud...")
    try:
        cloud = join_map(args.directory, args.max_depth, args.filtered)
    except FileNotFoundError as exc:
        print(exc, file=sys.stderr)
        return 1
    print(f"point cloud has {len(cloud)} points.")
    write_pcd_binary(cloud, args.output)
    return 0