"""
Limits package.

Decides whether an organization may add more of a countable resource, or
how much of a standalone quota it holds, and explains why.

Modules of interest:
- models: Capability vocabulary, resolution and result types.
- counter: Live resource counts per organization.
- resolver: Override-then-plan limit resolution.
- guard: Single-item and bulk admission decisions.
- usage: Per-capability usage statuses for dashboards.
- permissions: Boolean feature access with the same override precedence.
"""
