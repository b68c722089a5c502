"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the accrual ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Same-currency transfers neither create nor destroy money
2. atomicity.py - Rejected operations leave no trace; balances never go negative
3. idempotency.py - A second accrual at the same instant earns nothing
4. determinism.py - Same operations and clock readings give the same ledger file
5. monotonic_ids.py - Ids are unique and strictly increasing in creation order
6. temporal.py - Income is bounded by the window; history is time-ordered

These tests use hypothesis for property-based testing.
"""
