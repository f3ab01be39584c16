"""
Travel catalog: destinations and the bookable packages offered at them.

Reads are public. Writes require an admin session. Seat counters on
packages are owned by ``kuja.bookings.ledger`` and only resized here.
"""
