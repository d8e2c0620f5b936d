from __future__ import annotations

from django.core.management.base import BaseCommand

from modules.orders.providers import build_reaper


class Command(BaseCommand):
    help = "Cancel pending orders past the stock hold window."

    def add_arguments(self, parser):
        parser.add_argument(
            "--queue",
            action="store_true",
            help="Queue the Celery task instead of running the reaper inline.",
        )

    def handle(self, *args, **options):
        if options["queue"]:
            from modules.orders.tasks import cancel_unpaid_orders

            result = cancel_unpaid_orders.delay()
            self.stdout.write(f"Queued unpaid order reaper (task {result.id}).")
            return

        result = build_reaper().run()
        if not result.ran:
            self.stdout.write(
                self.style.WARNING("Unpaid order cancellation is disabled.")
            )
            return

        self.stdout.write(
            self.style.SUCCESS(
                "Unpaid orders processed: "
                f"cancelled={len(result.cancelled)}, "
                f"skipped={len(result.skipped)}, "
                f"failed={len(result.failed)}"
            )
        )
