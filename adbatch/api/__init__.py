"""
HTTP routes for the batch operations engine.
"""
