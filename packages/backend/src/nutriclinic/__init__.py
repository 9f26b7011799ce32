"""NutriClinic — multi-tenant backend for nutrition clinics.

Authentication, role/tenant scoped authorization, and management
endpoints for users, tenants (clinics) and access logs.
"""

__version__ = "0.1.0"
