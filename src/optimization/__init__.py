"""Iterative linear solvers built on the matrix-free factor operations."""
