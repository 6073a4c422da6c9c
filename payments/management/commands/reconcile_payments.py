from django.core.management.base import BaseCommand

from payments.services import reconcile_paid_orders


class Command(BaseCommand):
    help = 'Mark orders paid whose completed payment never reached them'

    def handle(self, *args, **options):
        repaired, failed = reconcile_paid_orders()
        self.stdout.write(self.style.SUCCESS(f'Reconciled {repaired} order(s)'))
        if failed:
            self.stderr.write(self.style.ERROR(f'{failed} order(s) still could not be settled'))
