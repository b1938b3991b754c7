"""
Book metadata service for the Book Access Layer.
"""
