"""Payment lifecycle hooks keeping invoices and accounts reconciled."""
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from clinic.models import Invoice, Payment
from clinic.services import invoices


@receiver(post_save, sender=Payment)
def payment_saved(sender, instance: Payment, **kwargs):
    invoices.reconcile(Invoice.objects.select_related('account').get(pk=instance.invoice_id))


@receiver(post_delete, sender=Payment)
def payment_deleted(sender, instance: Payment, **kwargs):
    # the invoice itself may be going away in a cascade
    invoice = Invoice.objects.select_related('account').filter(pk=instance.invoice_id).first()
    if invoice is not None:
        invoices.reconcile(invoice)
