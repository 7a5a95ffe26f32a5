"""
Query Shield: pre-execution safety checks for GraphQL endpoints.
"""

__version__ = "0.1.0"
