"""
SAM.gov search source.
"""

from .client import SamGovClient, parse_response

__all__ = ["SamGovClient", "parse_response"]
