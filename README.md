# slamkit

Small, readable building blocks for visual SLAM, built on NumPy and Pillow.

- `slamkit.geometry`: angle-axis rotations, quaternions and rigid transforms
  (`AngleAxis`, `Quaternion`, `Isometry`), `euler_angles`, and the
  `camera_readouts` helper that turns a 4x4 model-view matrix into a camera
  rotation, position, Euler angles and quaternion.
- `slamkit.lie`: the `SO3` and `SE3` groups with `exp`, `log`, `inverse` and
  composition, plus `hat`, `vee`, `se3_hat` and `se3_vee`. Twists put the
  translation part first and the rotation part last.
- `slamkit.linalg_demo`: `matrix_report`, `symmetric_eigen`,
  `solve_by_inverse` and `solve_by_qr`.
- `slamkit.matching`: `hamming_distance`, brute-force `match_descriptors` for
  binary descriptors (`Match` records), `distance_range`, and
  `filter_matches`, which keeps matches whose distance is at most twice the
  smallest distance, with a floor of 30.
- `slamkit.epipolar`: `find_fundamental_mat` (normalized eight-point),
  `find_essential_mat`, RANSAC `find_homography`, `decompose_essential_mat`,
  `triangulate_points`, `recover_pose` (cheirality check),
  `epipolar_constraint` and `triangulation`.
- `slamkit.icp`: `depth_pairs`, closed-form `pose_estimation_3d3d` by SVD, and
  Gauss-Newton `bundle_adjustment` of the pose.
- `slamkit.pnp`: `back_project`, `project`, `solve_pnp`, and
  Levenberg-Marquardt `bundle_adjustment` over the pose and all points.
- `slamkit.curve_fitting`: `generate_data`, `residuals`, `fit_gauss_newton`
  and `fit_levenberg_marquardt` for `y = exp(a x² + b x + c)`, each returning
  a `FitResult`.
- `slamkit.pointcloud`: `Intrinsics`, `PointCloud`, `read_poses`,
  `pose_matrix`, `rgbd_to_points`, `statistical_outlier_removal`,
  `voxel_filter`, `write_pcd_binary`, `read_pcd_binary` and `join_map`.
- `slamkit.dense_mapping`: `Camera`, `DepthFilter` (epipolar search, NCC
  matching, triangulation and Gaussian depth fusion), `bilinear`, `ncc` and
  `read_dataset_files`.
- `slamkit.imaging`: `describe` (returns an `ImageInfo`), `iterate_pixels`
  and `fill_region`.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Using the library

```python
import math
from slamkit.lie import SO3, SE3, hat, vee

R = SO3.exp([0.0, 0.0, math.pi / 2])   # rotate 90 degrees about z
print(R.log())                          # back to the rotation vector
print(vee(hat([1.0, 2.0, 3.0])))        # [1. 2. 3.]

T = SE3.exp([1.0, 0.0, 0.0, 0.0, 0.0, 0.0])
print(T.matrix())
print(T.inverse().transform([1.0, 0.0, 0.0]))
```

```python
import math
from slamkit.geometry import AngleAxis, Quaternion, Isometry

rotation = AngleAxis(math.pi / 4, (0.0, 0.0, 1.0))
q = Quaternion.from_angle_axis(rotation)
print(q.coeffs())                       # (x, y, z, w)

# Isometry methods return a new transform.
T = Isometry.identity().rotate(rotation).pretranslate([1.0, 3.0, 4.0])
print(T.transform([1.0, 0.0, 0.0]))
```

## Command-line programs

```
slamkit-hello [--library]
slamkit-linalg [--size N] [--seed S]
slamkit-geometry
slamkit-lie
slamkit-curve-fitting [--method levenberg-marquardt|gauss-newton] [--points N]
                      [--sigma S] [--seed S] [--iterations N]
slamkit-join-map [DIRECTORY] [--output map.pcd] [--filtered] [--max-depth D]
slamkit-dense-mapping DATASET_DIRECTORY [--output depth.png]
slamkit-image IMAGE [--save-dir DIR]
```

- `slamkit-join-map` reads `pose.txt`, `color/1.png` … `color/5.png` and
  `depth/1.pgm` … `depth/5.pgm` from the directory and writes a binary PCD
  file. `--filtered` drops depths of 7000 or more, removes statistical
  outliers per frame and voxel-filters the merged cloud.
- `slamkit-dense-mapping` reads the dataset's index file and `images/`, runs
  the depth filter over every frame against the first one, and saves the
  estimated depth map as an 8-bit image.
- `slamkit-image` prints the image's width, height and channel count, times a
  traversal of all pixels, and shows that filling a region through an alias
  changes the original while filling a copy does not; `--save-dir` saves
  both images.

## What it does not do

- There is no keypoint detector or descriptor extractor: matching, epipolar
  geometry, ICP and PnP work on descriptors, pixel coordinates and point
  sets you supply, and have no commands of their own.
- Nothing is drawn on screen; results are printed or written to files.
- Place recognition and loop closure are not included.