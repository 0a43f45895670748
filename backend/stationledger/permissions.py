"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Default role mappings follow principle of least privilege
- Admin has all permissions by default
"""

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER)


# Each permission is defined as: (code, description)
PERMISSION_DEFINITIONS = [
    ("VIEW_STOCK", "View tanks and stock movement history"),
    ("ADJUST_STOCK", "Post manual stock movements and deactivate tanks"),
    ("MANAGE_CATALOG", "Create stations, products and tanks"),
    ("CREATE_SALE", "Record sales at the point of sale"),
    ("VIEW_SALES", "View sales and invoices"),
    ("DELETE_SALE", "Delete a sale and reverse its stock and receivable effects"),
    ("MANAGE_PURCHASES", "Create and receive purchase orders"),
    ("MANAGE_ACCOUNTS", "Create and edit customers and suppliers"),
    ("APPLY_PAYMENT", "Record customer and supplier payments"),
    ("VIEW_ACCOUNTS", "View customers, suppliers, payments and statements"),
    ("MANAGE_EXPENSES", "Record station expenses"),
    ("VIEW_REPORTS", "View dashboard, sales, financial and aging reports"),
]

ALL_PERMISSIONS = frozenset(code for code, _ in PERMISSION_DEFINITIONS)


DEFAULT_ROLE_PERMISSIONS = {
    ROLE_ADMIN: ALL_PERMISSIONS,
    ROLE_MANAGER: ALL_PERMISSIONS - {"MANAGE_CATALOG"},
    ROLE_CASHIER: frozenset({
        "VIEW_STOCK",
        "CREATE_SALE",
        "VIEW_SALES",
        "MANAGE_PURCHASES",
        "APPLY_PAYMENT",
        "VIEW_ACCOUNTS",
        "MANAGE_EXPENSES",
    }),
}


def role_has_permission(role: str | None, permission_code: str) -> bool:
    return permission_code in DEFAULT_ROLE_PERMISSIONS.get(role or "", frozenset())
