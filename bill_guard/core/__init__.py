"""
Core modules for Bill Guard.

This package contains the billing engine itself: cycle and bill lifecycle,
recurrence scheduling, allocation checks and bill payments.
"""
