# Overview: Capability category constants for grouping related capabilities.


class CapabilityCategory:
    """Capability categories for organization and UI display."""
    ORDERS = "ORDERS"
    ROUTING = "ROUTING"
    PRICING = "PRICING"
    APPROVALS = "APPROVALS"
    STATUS = "STATUS"
    BILLING = "BILLING"
    MAINTENANCE = "MAINTENANCE"
    AUDIT = "AUDIT"
