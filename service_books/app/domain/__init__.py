"""
Provider data models.
"""
