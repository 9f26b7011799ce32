"""Authentication and authorization.

Learn: Two halves:
1. AuthService (service.py) turns credentials into tokens: login,
   registration under per-role rules, refresh and logout.
2. The guard (guard.py) checks every later request's access token
   against the route's declared roles, permissions and tenant.

Both sit on the static role → permission table in roles.py.
"""
