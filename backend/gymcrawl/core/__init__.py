"""
Configuration, logging and exceptions
"""
