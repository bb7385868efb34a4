"""
Persistence backends for LienX.
"""
