"""
Default permission catalog for the asset administration console.

Loaded by scripts/seed_permissions.py. Each category lists its permissions
as (key, name, description) in display order.
"""

PERMISSION_CONTROL_READ = "permission-control.read"
PERMISSION_CONTROL_CREATE = "permission-control.create"
PERMISSION_CONTROL_UPDATE = "permission-control.update"
PERMISSION_CONTROL_DELETE = "permission-control.delete"
PERMISSION_CONTROL_AUDIT = "permission-control.audit"
PERMISSION_CONTROL_ANALYTICS = "permission-control.analytics"


DEFAULT_CATEGORIES = {
    "USER_MANAGEMENT": {
        "name": "User Management",
        "permissions": [
            ("users.create", "Create Users", "Create new user accounts"),
            ("users.read", "View Users", "View user accounts and profiles"),
            ("users.update", "Edit Users", "Edit user accounts"),
            ("users.delete", "Delete Users", "Deactivate or delete user accounts"),
            ("users.assign_roles", "Assign User Roles", "Change the role of a user"),
            ("users.reset_password", "Reset User Passwords", "Reset another user's password"),
        ],
    },
    "ASSET_MANAGEMENT": {
        "name": "Asset Management",
        "permissions": [
            ("assets.create", "Create Assets", "Register new assets"),
            ("assets.read", "View Assets", "View the asset inventory"),
            ("assets.update", "Edit Assets", "Edit asset records"),
            ("assets.delete", "Delete Assets", "Delete asset records"),
            ("assets.assign", "Assign Assets", "Assign assets to users or locations"),
            ("assets.transfer", "Transfer Assets", "Transfer assets between locations"),
            ("assets.maintenance", "Manage Asset Maintenance", "Record repairs and maintenance"),
            ("assets.retire", "Retire Assets", "Retire assets from service"),
        ],
    },
    "MASTER_DATA": {
        "name": "Master Data",
        "permissions": [
            ("masters.oem.manage", "Manage OEMs", "Maintain the OEM master"),
            ("masters.categories.manage", "Manage Categories", "Maintain asset categories"),
            ("masters.products.manage", "Manage Products", "Maintain the product master"),
            ("masters.locations.manage", "Manage Locations", "Maintain locations"),
        ],
    },
    "DEPARTMENT_MANAGEMENT": {
        "name": "Department Management",
        "permissions": [
            ("departments.create", "Create Departments", "Create departments"),
            ("departments.read", "View Departments", "View departments"),
            ("departments.update", "Edit Departments", "Edit departments"),
            ("departments.delete", "Delete Departments", "Delete departments"),
            ("departments.manage_hierarchy", "Manage Department Hierarchy", "Re-parent departments"),
        ],
    },
    "TICKET_MANAGEMENT": {
        "name": "Ticket Management",
        "permissions": [
            ("tickets.create", "Create Tickets", "Raise service tickets"),
            ("tickets.read", "View Tickets", "View service tickets"),
            ("tickets.update", "Edit Tickets", "Update service tickets"),
            ("tickets.delete", "Delete Tickets", "Delete service tickets"),
            ("tickets.assign", "Assign Tickets", "Assign tickets to engineers"),
            ("tickets.close", "Close Tickets", "Close resolved tickets"),
        ],
    },
    "REPORTS": {
        "name": "Reports & Analytics",
        "permissions": [
            ("reports.view", "View Reports", "View reports"),
            ("reports.export", "Export Reports", "Export reports to file"),
            ("reports.dashboard", "View Dashboards", "View dashboards"),
            ("reports.analytics", "View Analytics", "View analytics"),
        ],
    },
    "SYSTEM": {
        "name": "System Administration",
        "permissions": [
            ("system.settings", "System Settings", "Change system settings"),
            ("system.logs", "System Logs", "View system logs"),
            ("system.backup", "System Backup", "Run and restore backups"),
            ("system.maintenance", "System Maintenance", "Run maintenance jobs"),
        ],
    },
    "PERMISSION_CONTROL": {
        "name": "Permission Control",
        "permissions": [
            (PERMISSION_CONTROL_READ, "View Permissions", "View roles, permissions and user grants"),
            (PERMISSION_CONTROL_CREATE, "Create Permissions", "Create permission entries"),
            (PERMISSION_CONTROL_UPDATE, "Update Permissions", "Edit role defaults and user grants"),
            (PERMISSION_CONTROL_DELETE, "Delete Permissions", "Reset user custom permissions"),
            (PERMISSION_CONTROL_AUDIT, "View Permission Audit", "View the permission audit trail"),
            (PERMISSION_CONTROL_ANALYTICS, "View Permission Analytics", "View role distribution"),
        ],
    },
}


ALL_PERMISSION_KEYS = [
    key
    for category in DEFAULT_CATEGORIES.values()
    for key, _name, _description in category["permissions"]
]


DEFAULT_ROLES = {
    "superadmin": {
        "name": "Super Administrator",
        "description": "Full access; defaults cannot be edited",
        "hierarchy_level": 7,
        "is_protected": True,
        "permissions": "ALL",  # Special case - gets all permissions
    },
    "admin": {
        "name": "Administrator",
        "description": "Organization-wide administration",
        "hierarchy_level": 6,
        "is_protected": False,
        "permissions": [
            "users.create", "users.read", "users.update", "users.delete",
            "users.assign_roles", "users.reset_password",
            "assets.create", "assets.read", "assets.update", "assets.assign",
            "assets.transfer", "assets.maintenance", "assets.retire",
            "masters.oem.manage", "masters.categories.manage",
            "masters.products.manage", "masters.locations.manage",
            "departments.create", "departments.read", "departments.update",
            "departments.delete", "departments.manage_hierarchy",
            "tickets.create", "tickets.read", "tickets.update",
            "tickets.assign", "tickets.close",
            "reports.view", "reports.export", "reports.dashboard", "reports.analytics",
        ],
    },
    "department_head": {
        "name": "Department Head",
        "description": "Head of a department",
        "hierarchy_level": 5,
        "is_protected": False,
        "permissions": [
            "users.read", "users.update",
            "assets.read", "assets.assign", "assets.transfer",
            "departments.read", "departments.update",
            "tickets.create", "tickets.read", "tickets.update", "tickets.assign",
            "reports.view", "reports.dashboard",
        ],
    },
    "coordinator": {
        "name": "Coordinator",
        "description": "Asset coordinator",
        "hierarchy_level": 4,
        "is_protected": False,
        "permissions": [
            "users.read",
            "assets.create", "assets.read", "assets.update",
            "assets.assign", "assets.maintenance",
            "tickets.create", "tickets.read", "tickets.update",
            "reports.view",
        ],
    },
    "department_coordinator": {
        "name": "Department Coordinator",
        "description": "Asset coordinator for a single department",
        "hierarchy_level": 3,
        "is_protected": False,
        "permissions": [
            "users.read",
            "assets.read", "assets.assign", "assets.maintenance",
            "tickets.create", "tickets.read", "tickets.update",
            "reports.view",
        ],
    },
    "engineer": {
        "name": "Engineer",
        "description": "Field or service engineer",
        "hierarchy_level": 2,
        "is_protected": False,
        "permissions": [
            "tickets.read", "tickets.update",
            "assets.read", "assets.maintenance",
            "reports.view",
        ],
    },
    "employee": {
        "name": "Employee",
        "description": "Regular employee",
        "hierarchy_level": 1,
        "is_protected": False,
        "permissions": [
            "assets.read",
            "tickets.create", "tickets.read",
            "reports.view",
        ],
    },
}
