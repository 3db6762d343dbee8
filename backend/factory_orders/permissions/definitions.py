# Overview: All capability definitions organized by category.
# Each capability is defined as: (code, name, description, category)

from .categories import CapabilityCategory


# -- ORDERS --

ORDER_CAPABILITIES = [
    (
        "CREATE_ORDERS",
        "Create Orders",
        "Start new draft orders and add products and variants",
        CapabilityCategory.ORDERS,
    ),
    (
        "EDIT_ORDERS",
        "Edit Orders",
        "Change quantities, notes and sample requests on existing orders",
        CapabilityCategory.ORDERS,
    ),
    (
        "DELETE_PRODUCTS",
        "Delete Products",
        "Soft-delete products that have not been invoiced",
        CapabilityCategory.ORDERS,
    ),
    (
        "DELETE_INVOICED_PRODUCTS",
        "Delete Invoiced Products",
        "Soft-delete products that already appear on an invoice",
        CapabilityCategory.ORDERS,
    ),
]


# -- ROUTING --

ROUTING_CAPABILITIES = [
    (
        "ROUTE_PRODUCTS",
        "Route Products",
        "Assign products to admin, manufacturer or client",
        CapabilityCategory.ROUTING,
    ),
    (
        "LOCK_PRODUCTS",
        "Lock Products",
        "Freeze or release manufacturer price edits on a product",
        CapabilityCategory.ROUTING,
    ),
]


# -- PRICING --

PRICING_CAPABILITIES = [
    (
        "EDIT_MANUFACTURER_PRICING",
        "Edit Manufacturer Pricing",
        "Enter manufacturer unit, shipping and sample prices",
        CapabilityCategory.PRICING,
    ),
    (
        "MANAGE_MARGINS",
        "Manage Margins",
        "Set per-product and per-order margin percentages",
        CapabilityCategory.PRICING,
    ),
    (
        "MANAGE_SYSTEM_CONFIG",
        "Manage System Configuration",
        "Change process-wide default margins",
        CapabilityCategory.PRICING,
    ),
    (
        "VIEW_COSTS",
        "View Costs",
        "See manufacturer-facing prices",
        CapabilityCategory.PRICING,
    ),
]


# -- APPROVALS --

APPROVAL_CAPABILITIES = [
    (
        "APPROVE_ITEMS",
        "Approve Items",
        "Approve variants, samples and client quotes",
        CapabilityCategory.APPROVALS,
    ),
    (
        "REJECT_ITEMS",
        "Reject Items",
        "Reject variants or move an order to rejected",
        CapabilityCategory.APPROVALS,
    ),
]


# -- STATUS --

STATUS_CAPABILITIES = [
    (
        "UPDATE_ORDER_STATUS",
        "Update Order Status",
        "Move orders through production states",
        CapabilityCategory.STATUS,
    ),
    (
        "SEND_TO_MANUFACTURER",
        "Send To Manufacturer",
        "Submit a draft order to the manufacturer for pricing",
        CapabilityCategory.STATUS,
    ),
    (
        "SUBMIT_PRICING",
        "Submit Pricing",
        "Mark an order as priced by the manufacturer",
        CapabilityCategory.STATUS,
    ),
    (
        "SEND_TO_CLIENT",
        "Send To Client",
        "Submit a priced order to the client for approval",
        CapabilityCategory.STATUS,
    ),
]


# -- BILLING --

BILLING_CAPABILITIES = [
    (
        "RECORD_PAYMENTS",
        "Record Payments",
        "Mark invoices paid from gateway events",
        CapabilityCategory.BILLING,
    ),
]


# -- MAINTENANCE --

MAINTENANCE_CAPABILITIES = [
    (
        "RUN_MAINTENANCE",
        "Run Maintenance",
        "Trigger draft cleanup and margin repair",
        CapabilityCategory.MAINTENANCE,
    ),
    (
        "VIEW_DIAGNOSTICS",
        "View Diagnostics",
        "Read margin diagnostics and configuration health",
        CapabilityCategory.MAINTENANCE,
    ),
    (
        "VIEW_DELETED_ITEMS",
        "View Deleted Items",
        "Read the deleted-products report",
        CapabilityCategory.MAINTENANCE,
    ),
]


# -- AUDIT --

AUDIT_CAPABILITIES = [
    (
        "VIEW_AUDIT_LOG",
        "View Audit Log",
        "Read the audit trail",
        CapabilityCategory.AUDIT,
    ),
]


CAPABILITY_DEFINITIONS = (
    ORDER_CAPABILITIES
    + ROUTING_CAPABILITIES
    + PRICING_CAPABILITIES
    + APPROVAL_CAPABILITIES
    + STATUS_CAPABILITIES
    + BILLING_CAPABILITIES
    + MAINTENANCE_CAPABILITIES
    + AUDIT_CAPABILITIES
)
