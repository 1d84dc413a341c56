import logging

from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver

from pkgsync.models import BundleItem, HotelDailyStock, HotelRoomAssociation, TicketPrice
from pkgsync.services.debounce import default_debouncer
from pkgsync.services.reactions import react_to_change

logger = logging.getLogger(__name__)


@receiver(post_save, sender=BundleItem)
@receiver(post_save, sender=HotelRoomAssociation)
def composition_created(sender, instance, created, **kwargs):  # noqa: ANN001
    if created:
        react_to_change(instance)


@receiver(post_delete, sender=BundleItem)
@receiver(post_delete, sender=HotelRoomAssociation)
@receiver(post_delete, sender=TicketPrice)
def source_deleted(sender, instance, **kwargs):  # noqa: ANN001
    react_to_change(instance)


@receiver(post_save, sender=TicketPrice)
def ticket_price_saved(sender, instance, **kwargs):  # noqa: ANN001
    react_to_change(instance)


@receiver(pre_save, sender=HotelDailyStock)
def stock_before_save(sender, instance, **kwargs):  # noqa: ANN001
    default_debouncer().remember_previous(instance)


@receiver(post_save, sender=HotelDailyStock)
def stock_saved(sender, instance, **kwargs):  # noqa: ANN001
    react_to_change(instance)
    default_debouncer().on_saved(instance)


@receiver(post_delete, sender=HotelDailyStock)
def stock_deleted(sender, instance, **kwargs):  # noqa: ANN001
    react_to_change(instance)
