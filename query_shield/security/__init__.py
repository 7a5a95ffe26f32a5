"""
Security components for Query Shield.
"""
