"""
Core masking components.

This package contains:
- Pattern validation and rule resolution
- The masking engine and its recursive traversal
- Retry, backoff and fallback recovery
- Sliding window rate limiting and the audit trail
- Metrics collection
"""
