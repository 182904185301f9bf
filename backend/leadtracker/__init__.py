"""Lead Tracker - lead capture, scoring and analytics API"""
__version__ = "1.0.0"
