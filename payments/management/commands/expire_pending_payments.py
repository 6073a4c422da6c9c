from django.core.management.base import BaseCommand

from payments.services import expire_stale_payments


class Command(BaseCommand):
    help = 'Fail gateway payments that stayed pending past PAYMENT_PENDING_TIMEOUT_MINUTES'

    def handle(self, *args, **options):
        expired = expire_stale_payments()
        self.stdout.write(self.style.SUCCESS(f'Expired {expired} pending payment(s)'))
