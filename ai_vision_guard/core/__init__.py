"""
Core modules for AI Vision Guard.

This package contains deadline-bounded execution, credential lifecycle
management, authenticated retries and content-addressed deduplication.
"""
