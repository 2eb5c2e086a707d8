"""
Level Up Solo - gamified task tracking web service
"""

__version__ = '1.0.0'
