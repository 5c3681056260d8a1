"""
Core modules for AI Tier Router.

This package contains the tier catalog, fallback resolution, rate
limiting, the invocation gateway and the orchestrator.
"""
