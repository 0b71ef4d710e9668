"""
Utilities Package for SecureRounds
==================================

Modules:
    - auth_decorators: Authentication and authorization decorators
    - validation: Role definitions and permission helpers
    - input_security: Sanitization, input validation and rate limiting
"""

# Authentication decorators
from .auth_decorators import (
    get_current_identity,
    login_required,
    admin_required
)

# Validation functions
from .validation import (
    Role,
    DEFAULT_ROLE,
    is_valid_role,
    has_admin_privileges,
    has_supervisor_access,
    get_role_display_name,
    get_role_permissions,
    VALID_ROLES,
    SUPERVISOR_ROLES
)

# Input security
from .input_security import (
    FIELD_LIMITS,
    RateLimiter,
    sanitize_input,
    validate_qr_payload,
    validate_gps_coordinates,
    validate_text_input,
    validate_file_size
)

__all__ = [
    # Decorators
    'get_current_identity',
    'login_required',
    'admin_required',

    # Validation
    'Role',
    'DEFAULT_ROLE',
    'is_valid_role',
    'has_admin_privileges',
    'has_supervisor_access',
    'get_role_display_name',
    'get_role_permissions',
    'VALID_ROLES',
    'SUPERVISOR_ROLES',

    # Input security
    'FIELD_LIMITS',
    'RateLimiter',
    'sanitize_input',
    'validate_qr_payload',
    'validate_gps_coordinates',
    'validate_text_input',
    'validate_file_size',
]
