"""
HSSE Management - Health, Safety, Security and Environment service package.
"""

__version__ = "1.0.0"
