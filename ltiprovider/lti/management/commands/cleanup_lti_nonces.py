"""
Management command to clean up expired LTI nonces and share keys.

Run manually:
    python manage.py cleanup_lti_nonces

Or schedule as a cron job for periodic cleanup:
    0 * * * * cd /path/to/ltiprovider && python manage.py cleanup_lti_nonces
"""
from django.core.management.base import BaseCommand
from django.utils import timezone

from lti.models import LTIConsumerNonce, LTIShareKey


class Command(BaseCommand):
    help = 'Clean up expired LTI nonces and share keys'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show count of records that would be deleted without deleting them',
        )

    def handle(self, *args, **options):
        now = timezone.now()

        if options['dry_run']:
            nonces = LTIConsumerNonce.objects.filter(expires__lte=now).count()
            share_keys = LTIShareKey.objects.filter(expires__lte=now).count()
            self.stdout.write(f"Would delete {nonces} expired nonces and {share_keys} expired share keys.")
        else:
            nonces = LTIConsumerNonce.cleanup_expired(now)
            share_keys = LTIShareKey.cleanup_expired(now)
            self.stdout.write(
                self.style.SUCCESS(
                    f"Successfully cleaned up {nonces} expired nonces and {share_keys} expired share keys."
                )
            )
