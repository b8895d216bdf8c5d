[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vioinit"
version = "0.1.0"
description = "Visual-inertial odometry building blocks: IMU pre-integration, feature bookkeeping, epipolar geometry and visual-inertial alignment"
requires-python = ">=3.10"
keywords = ["vio", "slam", "imu", "pre-integration", "visual-inertial", "epipolar", "calibration"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["vioinit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
