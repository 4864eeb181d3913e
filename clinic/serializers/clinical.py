from decimal import Decimal

from rest_framework import serializers

from clinic.models import OpdAppointment


class AppointmentCreateSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField()
    doctor_id = serializers.IntegerField(required=False, allow_null=True)
    department_id = serializers.IntegerField(required=False, allow_null=True)
    appointment_date = serializers.DateField(required=False)
    appointment_time = serializers.TimeField(required=False, allow_null=True)
    appointment_type = serializers.ChoiceField(choices=[c for c, _ in OpdAppointment.TYPE_CHOICES], required=False)
    chief_complaint = serializers.CharField(required=False, allow_blank=True)


class QueueQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False)
    doctor_id = serializers.IntegerField(required=False)


class TriageSerializer(serializers.Serializer):
    temperature = serializers.DecimalField(max_digits=4, decimal_places=1, min_value=Decimal('30'),
                                           max_value=Decimal('45'), required=False, allow_null=True)
    blood_pressure = serializers.RegexField(r'^\d{2,3}\s*/\s*\d{2,3}$', max_length=20, required=False,
                                            allow_blank=True, error_messages={'invalid': 'Blood pressure must look like 120/80'})
    heart_rate = serializers.IntegerField(min_value=30, max_value=250, required=False, allow_null=True)
    respiratory_rate = serializers.IntegerField(min_value=5, max_value=60, required=False, allow_null=True)
    oxygen_saturation = serializers.IntegerField(min_value=50, max_value=100, required=False, allow_null=True)
    pain_level = serializers.IntegerField(min_value=0, max_value=10, required=False, allow_null=True)
    weight = serializers.DecimalField(max_digits=5, decimal_places=1, min_value=Decimal('0'),
                                      max_value=Decimal('500'), required=False, allow_null=True)
    height = serializers.DecimalField(max_digits=5, decimal_places=1, min_value=Decimal('0'),
                                      max_value=Decimal('300'), required=False, allow_null=True)
    triage_notes = serializers.CharField(required=False, allow_blank=True)


class SoapSerializer(serializers.Serializer):
    subjective = serializers.CharField(required=False, allow_blank=True)
    objective = serializers.CharField(required=False, allow_blank=True)
    assessment = serializers.CharField(required=False, allow_blank=True)
    plan = serializers.CharField(required=False, allow_blank=True)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class AdmissionSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField()
    bed_id = serializers.IntegerField(required=False, allow_null=True)
    department_id = serializers.IntegerField(required=False, allow_null=True)
    attending_doctor_id = serializers.IntegerField(required=False, allow_null=True)
    chief_complaint = serializers.CharField(required=False, allow_blank=True)


class TransferSerializer(serializers.Serializer):
    bed_id = serializers.IntegerField()
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class DischargeSerializer(serializers.Serializer):
    discharge_summary = serializers.CharField(required=False, allow_blank=True)
    discharge_condition = serializers.ChoiceField(
        choices=['improved', 'recovered', 'stable', 'referred', 'deceased', 'against_advice'],
        required=False,
    )


class PrescriptionSerializer(serializers.Serializer):
    # required fields are checked by the prescribing service so the
    # error lists every missing one at once
    drug_id = serializers.IntegerField()
    dosage = serializers.CharField(required=False, allow_blank=True, max_length=100)
    frequency = serializers.CharField(required=False, allow_blank=True, max_length=100)
    duration = serializers.CharField(required=False, allow_blank=True, max_length=100)
    quantity = serializers.IntegerField(required=False, min_value=1)
    instructions = serializers.CharField(required=False, allow_blank=True)
    instant_dispensing = serializers.BooleanField(required=False, default=False)


class LabOrderSerializer(serializers.Serializer):
    test_id = serializers.IntegerField()
    priority = serializers.CharField(required=False, allow_blank=True)
    clinical_notes = serializers.CharField(required=False, allow_blank=True)


class LabPrioritySerializer(serializers.Serializer):
    priority = serializers.CharField(required=False, allow_blank=True)


class LabResultSerializer(serializers.Serializer):
    result = serializers.CharField()
    flag = serializers.ChoiceField(choices=['', 'normal', 'low', 'high', 'critical'], required=False, default='')
