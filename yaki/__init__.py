"""yaki - prepare a host for Kubernetes and drive its node lifecycle."""

__version__ = "0.1.0"
