[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "meshserving"
version = "0.1.0"
description = "Predictor sources, etcd connection settings and key-range watching for a model-mesh serving controller"
requires-python = ">=3.10"
keywords = ["model serving", "model mesh", "etcd", "kubernetes", "predictor", "controller"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["meshserving"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
