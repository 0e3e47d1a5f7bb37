"""Build Docker image manifests for locally stored images"""

__version__ = "0.1.0"
