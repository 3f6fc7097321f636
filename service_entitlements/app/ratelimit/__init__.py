"""
Rate limiting package.

Holds the cooldown gate that bounds how often a public, unauthenticated
action may be admitted for one subject (a restaurant table), and the
store backends that perform its compare-and-set.
"""
