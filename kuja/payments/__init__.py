"""
Payment reconciliation: attempts against M-Pesa, card and bank transfer,
and how their outcomes settle or refund a booking.
"""
