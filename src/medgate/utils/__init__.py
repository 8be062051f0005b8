"""Utility modules for MedGate."""
