[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamkit"
version = "0.1.0"
description = "Building blocks for visual SLAM: rigid-body geometry, Lie groups, epipolar geometry, ICP, PnP, curve fitting, point clouds and dense depth estimation."
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "pillow",
]
keywords = [
    "slam",
    "computer-vision",
    "epipolar-geometry",
    "lie-groups",
    "point-cloud",
    "pose-estimation",
    "triangulation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamkit-hello = "slamkit.hello:main"
slamkit-linalg = "slamkit.linalg_demo:main"
slamkit-geometry = "slamkit.geometry:main"
slamkit-lie = "slamkit.lie:main"
slamkit-curve-fitting = "slamkit.curve_fitting:main"
slamkit-join-map = "slamkit.pointcloud:main"
slamkit-dense-mapping = "slamkit.dense_mapping:main"
slamkit-image = "slamkit.imaging:main"

[tool.hatch.build.targets.wheel]
packages = ["slamkit"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
