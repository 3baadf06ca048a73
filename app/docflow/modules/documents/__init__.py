"""
Documents module: the document lifecycle engine.

- Every metadata change appends an immutable version; revert appends a copy of an old one
- Approval flows walk ordered role levels; each approver decides at most once
- Share links are bearer tokens with an access level and optional expiry
- Each successful mutation writes exactly one audit entry in the same transaction
- Stores are compare-and-swap on a per-document revision
"""
