"""SCEP Adapter - Simple Certificate Enrollment Protocol client and responder.

Exposes the SCEP operations (GetCACaps, GetCACert, PKIOperation,
GetNextCACert) as typed async calls, negotiating GET or POST from the
capabilities a CA advertises.
"""

__version__ = "0.1.0"
