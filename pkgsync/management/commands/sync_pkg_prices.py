from datetime import date

from django.core.management.base import BaseCommand, CommandError

from pkgsync.models import OtaPlatform, PackageOtaProduct, PackageProduct
from pkgsync.services.sync import sync_product_to_platform


class Command(BaseCommand):
    help = "Push cached package prices and inventory to the OTA platforms each product is listed on."

    def add_arguments(self, parser):  # noqa: ANN001, ANN201
        parser.add_argument("--product", type=int, help="Sync only this product id.")
        parser.add_argument("--platform", choices=OtaPlatform.values, help="Sync only this platform.")
        parser.add_argument("--dates", nargs="*", default=None, help="Restrict to these YYYY-MM-DD dates.")

    def _parse_dates(self, values):  # noqa: ANN001, ANN202
        if values is None:
            return None
        try:
            return [date.fromisoformat(value) for value in values]
        except ValueError as exc:
            raise CommandError(f"Invalid --dates value: {exc}") from exc

    def handle(self, *args, **options):  # noqa: ANN002, ANN003, ANN201
        dates = self._parse_dates(options.get("dates"))
        products = PackageProduct.objects.enabled().order_by("id")
        if options.get("product"):
            products = products.filter(pk=options["product"])
            if not products.exists():
                raise CommandError(f"Enabled package product {options['product']} not found.")

        failures = 0
        for product in products:
            listings = PackageOtaProduct.objects.filter(product=product, is_active=True)
            if options.get("platform"):
                listings = listings.filter(platform=options["platform"])
            for listing in listings:
                result = sync_product_to_platform(product, listing.platform, dates)
                style = self.style.SUCCESS if result.success else self.style.ERROR
                self.stdout.write(style(f"{product.code} -> {listing.platform}: {result.message}"))
                failures += 0 if result.success else 1

        if failures:
            raise CommandError(f"{failures} product/platform syncs failed.")
