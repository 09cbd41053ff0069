"""
booked - availability and capacity-conflict engine for bookable time slots.
"""

__version__ = "0.1.0"
