"""Predictor sources, etcd connection settings and key-range watching for model-mesh serving."""

__version__ = "0.1.0"