"""
Keeper automation for Bill Guard.

Time-triggered sweeps that find due bills across all cycles and pay them
through the privileged payment path.
"""
