"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the rebase ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Transfers move principal, only settlement mints
2. atomicity.py - All-or-nothing operation semantics
3. idempotency.py - Duplicate execution and delivery handling
4. determinism.py - Reproducible integer accrual
5. canonicalization.py - Content-addressable identity
6. temporal.py - Monotonic accrual, clock ordering, clone_at and replay

These tests use hypothesis for property-based testing.
"""
