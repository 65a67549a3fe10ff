"""Spectrally normalized GAN for image directories."""

__version__ = "0.1.0"
