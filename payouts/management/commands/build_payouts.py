from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_datetime
from django.utils import timezone

from payouts.services import run_payout_cycle


class Command(BaseCommand):
    help = 'Build a pending payout for every active vendor with an unclaimed balance'

    def add_arguments(self, parser):
        parser.add_argument(
            '--until',
            help='ISO datetime closing the period (defaults to now)',
        )

    def handle(self, *args, **options):
        period_end = None
        if options.get('until'):
            period_end = parse_datetime(options['until'])
            if period_end is None:
                raise CommandError('--until must be an ISO datetime')
            if timezone.is_naive(period_end):
                period_end = timezone.make_aware(period_end)

        payouts = run_payout_cycle(period_end)
        for payout in payouts:
            self.stdout.write(f'{payout.payout_number}  {payout.vendor.business_name}  {payout.amount} {payout.currency}')
        self.stdout.write(self.style.SUCCESS(f'Built {len(payouts)} payout(s)'))
