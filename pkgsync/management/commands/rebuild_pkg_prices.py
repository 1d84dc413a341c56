from django.core.management.base import BaseCommand, CommandError

from pkgsync.models import PackageProduct
from pkgsync.services import price_cache


class Command(BaseCommand):
    help = "Rebuild the daily package price cache for one product or every enabled product."

    def add_arguments(self, parser):  # noqa: ANN001, ANN201
        parser.add_argument("--product", type=int, help="Rebuild only this product id.")
        parser.add_argument("--purge", action="store_true", help="Also delete rows outside the sale window.")

    def handle(self, *args, **options):  # noqa: ANN002, ANN003, ANN201
        product_id = options.get("product")
        if not product_id:
            summary = price_cache.rebuild_all()
            self.stdout.write(
                self.style.SUCCESS(
                    f"Rebuilt {summary['rebuilt']} products, skipped {summary['skipped']}, "
                    f"failed {len(summary['failed'])}, purged {summary['purged_rows']} rows."
                )
            )
            return

        product = PackageProduct.objects.filter(pk=product_id).first()
        if product is None:
            raise CommandError(f"Package product {product_id} not found.")
        result = price_cache.rebuild(product)
        purged = price_cache.purge_orphaned_rows(product) if options.get("purge") else 0
        self.stdout.write(
            self.style.SUCCESS(f"Product {product.pk}: {result.status}, {result.rows_written} rows, {purged} purged.")
        )
