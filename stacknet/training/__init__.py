"""Datasets, training algorithms and the training session runner."""
