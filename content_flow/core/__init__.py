"""
Core modules for content-flow.

This package contains request orchestration (cache, quota ledger, retry and
fallback across providers), the suggestion lifecycle and the content
history engine.
"""
