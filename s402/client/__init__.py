"""
Client SDK for consuming s402-gated APIs.

Provides S402Client and s402_fetch for signed requests and automatic payment.
"""

from .fetch import S402Client, S402Response, s402_fetch

__all__ = ["S402Client", "S402Response", "s402_fetch"]
