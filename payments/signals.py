# payments/signals.py
from django.dispatch import Signal

# Sent once per payment after the transaction reached completed and the
# order was marked paid. kwargs: transaction
payment_confirmed = Signal()

# kwargs: transaction, refund, amount
payment_refunded = Signal()
