"""
Storage package for batches and their items.
"""
