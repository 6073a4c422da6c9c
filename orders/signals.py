# orders/signals.py
"""
Booking events. Both are sent from ``transaction.on_commit`` so receivers
only ever see committed state.
"""
from django.dispatch import Signal

# kwargs: order
order_created = Signal()

# kwargs: order, from_status, to_status, changed_by
order_status_changed = Signal()
