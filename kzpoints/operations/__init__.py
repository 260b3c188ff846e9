"""
Operations Layer

This package provides the write paths that compose database methods into
single transactions. Operations modules validate input at the boundary and
keep derived tables in step with the records they are computed from.

Each operations module focuses on a specific domain:
- RecordOperations: record submission and classification changes
- FilterOperations: filter grading and recalculation requests
"""
