"""
Claw queue - session and credit scheduler for a remotely played claw machine.
"""

__version__ = "1.0.0"
