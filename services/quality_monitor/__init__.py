"""
Production Quality Monitor Service.

Continuously samples a live service's performance, compliance and
reliability, raises and auto-resolves quality alerts, and mines the
history for improvement insights.
"""

__version__ = "0.1.0"
