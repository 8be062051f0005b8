"""Sample PHI operations served through the MedGate pipeline."""
