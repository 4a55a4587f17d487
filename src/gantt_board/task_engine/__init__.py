"""Rule engine for the Gantt board.

This package provides the stored and chart data model, the file-backed
board store, link validation, sprint aggregation, successor shifting,
grouping projections and the engine that ties them together.
"""
