from decimal import Decimal

from rest_framework import serializers

from clinic.models import Payment


class DiscountSerializer(serializers.Serializer):
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2)


class ProcedureChargeSerializer(serializers.Serializer):
    procedure = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(required=False, min_value=1, default=1)


class PaymentSerializer(serializers.Serializer):
    invoice_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    method = serializers.ChoiceField(choices=[c for c, _ in Payment.METHOD_CHOICES], required=False, default='cash')
    reference_no = serializers.CharField(required=False, allow_blank=True, max_length=64)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=255)


class PaymentUpdateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'), required=False)
    method = serializers.ChoiceField(choices=[c for c, _ in Payment.METHOD_CHOICES], required=False)
    reference_no = serializers.CharField(required=False, allow_blank=True, max_length=64)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=255)


class ExportQuerySerializer(serializers.Serializer):
    format = serializers.ChoiceField(choices=['csv', 'xlsx', 'pdf'], required=False, default='csv')
