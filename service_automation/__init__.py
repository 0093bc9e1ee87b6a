"""
Automation Service.
"""
