"""
Persistence package.

The engine reads overrides, plan entitlements and resource counts, and
performs exactly one kind of write to rate-limit state: the cooldown
compare-and-set. Service-request writes live here as well.
"""
