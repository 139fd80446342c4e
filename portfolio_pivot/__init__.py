"""
Portfolio pivot engine: currency normalization, filtering, grouping and
pivot layout for portfolio financial reports.
"""
__version__ = "0.1.0"
