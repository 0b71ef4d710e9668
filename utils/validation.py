"""
Validation Utilities for SecureRounds
=====================================

Role definitions and permission helpers shared by the access policy,
the route decorators and the API.
"""

from enum import Enum

class Role(str, Enum):
    """Closed set of roles an identity can hold"""
    SECURITY_GUARD = 'security_guard'
    MANAGER = 'manager'
    ADMIN = 'admin'

    @classmethod
    def parse(cls, value):
        """
        Convert a stored or submitted role string into a Role

        Args:
            value (str | Role | None): Role value

        Returns:
            Role | None: Parsed role, or None if the value is not a known role
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

DEFAULT_ROLE = Role.SECURITY_GUARD

# Valid user roles
VALID_ROLES = [role.value for role in Role]

# Roles allowed to read rounds submitted by other identities
SUPERVISOR_ROLES = frozenset({Role.MANAGER, Role.ADMIN})

def is_valid_role(role):
    """
    Check if role is valid

    Args:
        role (str): User role to validate

    Returns:
        bool: True if role is valid
    """
    return Role.parse(role) is not None

def has_admin_privileges(role):
    """
    Check if role has admin privileges

    Args:
        role (str | Role): User role to check

    Returns:
        bool: True if role is admin
    """
    return Role.parse(role) is Role.ADMIN

def has_supervisor_access(role):
    """
    Check if role may review rounds submitted by other guards

    Args:
        role (str | Role): User role to check

    Returns:
        bool: True for managers and admins
    """
    return Role.parse(role) in SUPERVISOR_ROLES

def get_role_display_name(role):
    """Get user-friendly role name"""
    role_names = {
        Role.ADMIN: 'Administrator',
        Role.MANAGER: 'Manager',
        Role.SECURITY_GUARD: 'Security Guard',
    }
    parsed = Role.parse(role)
    return role_names[parsed] if parsed else 'No Role'

def get_role_permissions(role):
    """
    Get permissions description for a role

    Args:
        role (str): User role

    Returns:
        dict: Role permissions with title, permissions list, and restrictions
    """
    permissions = {
        Role.ADMIN: {
            'title': 'Administrator Permissions',
            'permissions': [
                'View security rounds from every location',
                'Create users and assign roles to other users',
                'Restrict manager access to specific locations',
                'View the role audit log',
                'Run data retention cleanup'
            ],
            'restrictions': ['Cannot modify own role']
        },
        Role.MANAGER: {
            'title': 'Manager Permissions',
            'permissions': [
                'View security rounds for assigned locations',
                'View guard photos for accessible rounds',
                'Submit own security rounds'
            ],
            'restrictions': [
                'Access limited to assigned locations when restricted',
                'Cannot manage users or roles',
                'Cannot view the role audit log'
            ]
        },
        Role.SECURITY_GUARD: {
            'title': 'Security Guard Permissions',
            'permissions': [
                'Scan checkpoint corner QR codes',
                'Capture geotagged selfies',
                'Submit, update and delete own security rounds'
            ],
            'restrictions': [
                'Cannot view rounds submitted by other guards',
                'Cannot manage users or roles'
            ]
        }
    }

    return permissions.get(Role.parse(role), {
        'title': 'Unknown Role',
        'permissions': [],
        'restrictions': ['Invalid role specified']
    })
