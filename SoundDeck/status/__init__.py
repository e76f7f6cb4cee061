"""Status package: enums, exceptions and result envelopes.

This package defines:
    - Status: a StrEnum of persistence and profile lifecycle outcomes
    - STATUS_MESSAGE: default user-facing messages per status
    - BaseStatusException: base exception for status-driven error handling
    - Result, envelope and returns_envelope for outcomes crossing the UI boundary
"""
