"""
Core modules for Racha AI.

This package contains the deterministic expense interpreter, the split
policies, and the cost-aware model routing with its budget guard.
"""
