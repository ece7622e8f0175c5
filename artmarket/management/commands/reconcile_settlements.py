from django.core.management.base import BaseCommand
from loguru import logger

from artmarket.services import build_reconciler


class Command(BaseCommand):
    help = 'Complete purchases confirmed on the ledger but not yet recorded.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--stale-after',
            type=int,
            default=300,
            help='Treat submitted attempts older than this many seconds as unresolved.',
        )

    def handle(self, *args, **options):
        reconciler = build_reconciler()
        reconciler.stale_after_seconds = options['stale_after']
        logger.info('Reconciling settlements (stale after {}s)', reconciler.stale_after_seconds)
        report = reconciler.run()
        self.stdout.write(
            f'persisted={len(report.persisted)} failed={len(report.failed)} pending={len(report.pending)}'
        )
