"""
Core modules for AI Provider Guard.

This package contains provider routing, circuit breaking, guardrails,
the fallback cache, and usage disclosure recording.
"""
