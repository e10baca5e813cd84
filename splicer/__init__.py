"""
Branch Splicer - Submission Splicing Engine

Routes one form submission to the destination ledgers it opted into,
keyed by an anonymous applicant identity, and keeps the shared
presence/analytics index in step under a single coarse lock.
"""

__version__ = "0.1.0"
