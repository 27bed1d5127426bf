"""
Course import service.
Scrapes a course page, re-hosts its images and returns a course draft.
"""

__version__ = "1.0.0"
