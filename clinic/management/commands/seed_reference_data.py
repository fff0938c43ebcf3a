from decimal import Decimal, InvalidOperation

from django.core.management.base import BaseCommand, CommandError

from clinic.models import Branch, Service
from clinic.services.reference import seed_branch


class Command(BaseCommand):
    help = "Seed roles, payment modes, standard services and branch rates (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument('--branch', type=int, help='Branch id; defaults to every active branch.')
        parser.add_argument(
            '--rate', action='append', default=[], metavar='CODE=AMOUNT',
            help='Override a default rate for newly created branch rates, e.g. --rate CONSULTATION=300',
        )

    def handle(self, *args, **opts):
        rates = {}
        for item in opts['rate']:
            code, _, amount = item.partition('=')
            code = code.strip().upper()
            if code not in Service.STANDARD_CODES:
                raise CommandError(f'Unknown service code: {code}')
            try:
                rates[code] = Decimal(amount)
            except InvalidOperation:
                raise CommandError(f'Invalid amount for {code}: {amount}')

        branches = Branch.objects.filter(is_active=True)
        if opts['branch']:
            branches = branches.filter(id=opts['branch'])
        if not branches.exists():
            raise CommandError('No matching branch. Run create_admin first.')

        for branch in branches:
            summary = seed_branch(branch, rates)
            self.stdout.write(self.style.SUCCESS(f"ok: {branch} {summary}"))
