"""
gymcrawl - multi-source gym facility crawling and record fusion
"""

__version__ = "1.0.0"
