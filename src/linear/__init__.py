"""Linear (Jacobian) factors and the shared information matrix."""
