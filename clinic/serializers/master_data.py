from decimal import Decimal

from rest_framework import serializers

from clinic.models import Bed, DrugFormulary, ServiceCatalogue, Ward
from clinic.text import clean_text


def _clean(v):
    return clean_text(v)


class DepartmentSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=20)
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    icon = serializers.CharField(required=False, allow_blank=True, max_length=64)
    sort_order = serializers.IntegerField(required=False, min_value=0)
    status = serializers.ChoiceField(choices=['active', 'inactive'], required=False)

    def validate_name(self, v):
        v = _clean(v)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters')
        return v

    def validate_description(self, v):
        return _clean(v)


class ListQuerySerializer(serializers.Serializer):
    status = serializers.CharField(required=False, allow_blank=True)
    search = serializers.CharField(required=False, allow_blank=True)


class WardSerializer(serializers.Serializer):
    ward_code = serializers.CharField(max_length=20)
    name = serializers.CharField(max_length=255)
    department_id = serializers.IntegerField()
    ward_type = serializers.ChoiceField(choices=[c for c, _ in Ward.TYPE_CHOICES], required=False)
    capacity = serializers.IntegerField()
    status = serializers.ChoiceField(choices=['active', 'inactive'], required=False)
    description = serializers.CharField(required=False, allow_blank=True)

    def validate_description(self, v):
        return _clean(v)


class BedSerializer(serializers.Serializer):
    bed_number = serializers.CharField(max_length=20)
    bed_type = serializers.ChoiceField(choices=[c for c, _ in Bed.TYPE_CHOICES], required=False)


class BedStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in Bed.STATUS_CHOICES])


class TestCatalogSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=30)
    name = serializers.CharField(max_length=255)
    category = serializers.CharField(max_length=100)
    department_id = serializers.IntegerField(required=False, allow_null=True)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    turnaround_time = serializers.IntegerField(min_value=1)
    unit = serializers.CharField(required=False, allow_blank=True, max_length=50)
    normal_range = serializers.CharField(required=False, allow_blank=True, max_length=255)
    sample_type = serializers.CharField(required=False, allow_blank=True, max_length=100)
    instructions = serializers.CharField(required=False, allow_blank=True)


class PriceUpdateSerializer(serializers.Serializer):
    # kept as a string so precision errors reach the domain check
    price = serializers.CharField()
    force = serializers.BooleanField(required=False, default=False)


class TurnaroundSerializer(serializers.Serializer):
    turnaround_time = serializers.IntegerField()


class DrugSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    generic_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    atc_code = serializers.CharField(required=False, allow_blank=True, max_length=7)
    strength = serializers.CharField(max_length=50)
    form = serializers.ChoiceField(choices=[c for c, _ in DrugFormulary.FORM_CHOICES])
    therapeutic_class = serializers.CharField(required=False, allow_blank=True, max_length=100)
    contraindications = serializers.CharField(required=False, allow_blank=True)
    side_effects = serializers.CharField(required=False, allow_blank=True)
    manufacturer = serializers.CharField(required=False, allow_blank=True, max_length=255)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))
    stock_quantity = serializers.IntegerField(required=False, min_value=0, default=0)
    reorder_level = serializers.IntegerField(required=False, min_value=0, default=10)

    def validate_atc_code(self, v):
        return (v or '').strip().upper()


class StockAdjustSerializer(serializers.Serializer):
    adjustment = serializers.IntegerField()
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default='adjustment')


class ReorderLevelSerializer(serializers.Serializer):
    reorder_level = serializers.IntegerField()


class ServiceSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=30)
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    category = serializers.ChoiceField(choices=[c for c, _ in ServiceCatalogue.CATEGORY_CHOICES])
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))
    is_active = serializers.BooleanField(required=False, default=True)
    is_billable = serializers.BooleanField(required=False, default=True)


class ImportSerializer(serializers.Serializer):
    file = serializers.FileField()
