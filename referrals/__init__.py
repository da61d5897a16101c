"""Core (HTTP-agnostic) referral dashboard logic.

This package contains:
- column resolution (spreadsheet headers -> canonical fields)
- row normalization (raw cells -> typed referral records)
- table decoding (XLSX/CSV bytes -> pandas)
- latest-dataset storage
- read-side filters, CSV export and dashboard summaries
"""
