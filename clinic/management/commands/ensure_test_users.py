# clinic/management/commands/ensure_test_users.py
from django.core.management.base import BaseCommand, CommandError

from clinic.models import Branch, Doctor, Role, User

PASSWORD = "Test@12345"


class Command(BaseCommand):
    help = f"Ensure one test user per role exists in a branch with password={PASSWORD} (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument('--branch', type=int, help='Branch id; defaults to the first active branch.')
        parser.add_argument('--domain', default='opdesk.test')

    def handle(self, *args, **opts):
        branches = Branch.objects.filter(is_active=True).order_by('id')
        if opts['branch']:
            branches = branches.filter(id=opts['branch'])
        branch = branches.first()
        if branch is None:
            raise CommandError('No active branch. Run create_admin first.')

        for code, name in Role.CODE_CHOICES:
            email = f"{code.lower().replace('_', '.')}@{opts['domain']}"
            u, created = User.objects.get_or_create(
                email=email,
                defaults={
                    'username': email,
                    'full_name': f'Test {name}',
                    'organization_id': branch.organization_id,
                    'branch': branch,
                    'is_active': True,
                },
            )
            # reset password, binding and activation on every run
            u.set_password(PASSWORD)
            u.organization_id = branch.organization_id
            u.branch = branch
            u.is_active = True
            u.save(update_fields=['password', 'organization', 'branch', 'is_active'])
            u.set_roles([code])
            if code == Role.DOCTOR:
                Doctor.objects.update_or_create(
                    user=u,
                    defaults={'organization_id': branch.organization_id, 'branch': branch,
                              'full_name': u.full_name, 'is_active': True},
                )
            self.stdout.write(self.style.SUCCESS(f"ok: {email} ({code}){' created' if created else ''}"))
        self.stdout.write(self.style.SUCCESS("All test users ensured."))
