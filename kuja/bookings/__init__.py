"""
Booking lifecycle for Kuja Twende Adventures.

- ledger.py: seat availability per package, updated with conditional
  UPDATE statements so concurrent bookings never oversell
- booking_service.py: booking records and their status transitions
- router.py: booking endpoints and the traveller dashboard endpoints
"""
