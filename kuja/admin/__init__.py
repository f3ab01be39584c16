"""
Admin dashboard: user management and headline figures.

Booking and payment listings for admins live with their own routers
(``GET /api/bookings``, ``GET /api/payments``) and branch on the role.
"""
