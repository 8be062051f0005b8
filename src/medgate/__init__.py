"""MedGate - request mediation layer for protected health information."""

__version__ = "0.1.0"
