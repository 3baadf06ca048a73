"""
Central constants for the docflow application.
"""
from __future__ import annotations

# Principal roles
ROLE_ADMIN = "Admin"
ROLE_STAFF = "Staff"
ROLE_VIEWER = "Viewer"
ROLES = (ROLE_ADMIN, ROLE_STAFF, ROLE_VIEWER)

# Category whose status is restricted to the process steps below
CATEGORY_EMBEDDED = "Embedded System Design"

# Status values allowed when category == CATEGORY_EMBEDDED (in process order)
EMBEDDED_STEPS = (
    "Requirement Analysis",
    "System Specification",
    "Architecture Design",
    "Hardware/Software Partitioning",
    "Detailed Design",
    "Implementation",
    "Testing & Validation",
)

DEFAULT_STATUS = "active"

# Approval flows
FLOW_SINGLE = "single"
FLOW_MULTI = "multi"
FLOW_TYPES = (FLOW_SINGLE, FLOW_MULTI)

DECISION_PENDING = "pending"
DECISION_APPROVED = "approved"
DECISION_REJECTED = "rejected"
SUBMITTABLE_DECISIONS = (DECISION_APPROVED, DECISION_REJECTED)

# Share links
ACCESS_VIEW = "view"
ACCESS_DOWNLOAD = "download"
ACCESS_LEVELS = (ACCESS_VIEW, ACCESS_DOWNLOAD)
SHARE_TOKEN_BYTES = 32  # 256 bits

ANONYMOUS_ACTOR = "Anonymous"
