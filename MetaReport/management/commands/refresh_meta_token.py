from django.core.management.base import BaseCommand, CommandError

from MetaReport.services.token_manager import VALID, TokenLifecycleManager, TokenRefreshError


class Command(BaseCommand):
    help = 'Exchange the stored Meta access token for a fresh long-lived token'

    def add_arguments(self, parser):
        parser.add_argument(
            '--if-expiring',
            action='store_true',
            help='Skip the exchange while the stored token is not close to expiry.',
        )

    def handle(self, *args, **options):
        manager = TokenLifecycleManager()
        if options['if_expiring'] and manager.status() == VALID:
            self.stdout.write('Stored Meta token is valid; nothing to do.')
            return

        try:
            result = manager.refresh()
        except TokenRefreshError as exc:
            raise CommandError(f'Token refresh failed: {exc.detail}') from exc

        self.stdout.write(
            self.style.SUCCESS(
                f"Meta token refreshed, expires at {result['expires_at'].isoformat()} "
                f"({result['expires_in_days']} days)"
            )
        )
