from django.core.management.base import BaseCommand, CommandError

from clinic.exceptions import Conflict
from clinic.models import Role, User
from clinic.services.reference import ensure_branch, seed_branch


class Command(BaseCommand):
    help = "Create an organization, its first branch and a SUPER_ADMIN login."

    def add_arguments(self, parser):
        parser.add_argument('--email', required=True)
        parser.add_argument('--password', required=True)
        parser.add_argument('--name', default='Super Admin')
        parser.add_argument('--org', default='Default Organization')
        parser.add_argument('--branch-name', default='Main Branch')
        parser.add_argument('--branch-code', default='MAIN')
        parser.add_argument('--no-seed', action='store_true', help='Skip reference data seeding.')

    def handle(self, *args, **opts):
        if len(opts['password']) < 8:
            raise CommandError('Password must be at least 8 characters.')
        email = opts['email'].strip().lower()
        try:
            branch = ensure_branch(opts['org'], opts['branch_name'], opts['branch_code'].strip().upper())
        except Conflict as e:
            raise CommandError(str(e.detail))
        if not opts['no_seed']:
            seed_branch(branch)

        user = User.objects.filter(email__iexact=email).first()
        if user is None:
            user = User.objects.create_user(
                email=email, password=opts['password'], full_name=opts['name'],
                organization_id=branch.organization_id, branch=branch, is_staff=True,
            )
            action = 'created'
        else:
            user.set_password(opts['password'])
            user.organization_id = branch.organization_id
            user.branch = branch
            user.is_active = True
            user.save(update_fields=['password', 'organization', 'branch', 'is_active'])
            action = 'updated'
        user.set_roles(sorted(user.role_codes | {Role.SUPER_ADMIN}))
        self.stdout.write(self.style.SUCCESS(f"{action}: {email} (SUPER_ADMIN) in {branch}"))
