from phonenumber_field.serializerfields import PhoneNumberField
from rest_framework import serializers

from drivers.models import DriverStatus
from parcels.models import ParcelStatus, ServiceType
from payments.models import PaymentMethod

# Input serializers check request shape only; business rules live in the core.
# Output serializers read the core's frozen dataclasses by attribute.


class EnumValueField(serializers.Field):
    """Renders a str Enum member as its value."""

    def to_representation(self, value):
        return getattr(value, "value", value)


class CoordinateSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


# --- parcels ---

class NewParcelSerializer(serializers.Serializer):
    recipient_name = serializers.CharField(max_length=255)
    recipient_phone = PhoneNumberField()
    pickup_address = serializers.CharField()
    delivery_address = serializers.CharField()
    weight = serializers.DecimalField(max_digits=9, decimal_places=3, min_value=0)
    service_type = serializers.ChoiceField(choices=[s.value for s in ServiceType], default=ServiceType.STANDARD.value)
    insurance = serializers.BooleanField(default=False)
    parcel_type = serializers.CharField(max_length=50, required=False, allow_null=True, allow_blank=True)
    description = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[s.value for s in ParcelStatus])
    location = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    notes = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class ParcelSerializer(serializers.Serializer):
    id = serializers.CharField()
    tracking_id = serializers.CharField()
    sender_id = serializers.CharField()
    recipient_name = serializers.CharField()
    recipient_phone = serializers.CharField()
    pickup_address = serializers.CharField()
    delivery_address = serializers.CharField()
    weight = serializers.DecimalField(max_digits=9, decimal_places=3)
    service_type = EnumValueField()
    insurance = serializers.BooleanField()
    parcel_type = serializers.CharField(allow_null=True)
    description = serializers.CharField(allow_null=True)
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    distance_km = serializers.FloatField()
    status = EnumValueField()
    current_location = serializers.CharField(allow_null=True)
    estimated_delivery_date = serializers.DateField()
    actual_delivery_date = serializers.DateField(allow_null=True)
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField()


class PublicParcelSerializer(serializers.Serializer):
    """What anyone holding a tracking id may see."""
    tracking_id = serializers.CharField()
    status = EnumValueField()
    service_type = EnumValueField()
    current_location = serializers.CharField(allow_null=True)
    estimated_delivery_date = serializers.DateField()
    actual_delivery_date = serializers.DateField(allow_null=True)


class StatusHistorySerializer(serializers.Serializer):
    status = EnumValueField()
    location = serializers.CharField(allow_null=True)
    notes = serializers.CharField()
    updated_by = serializers.CharField()
    timestamp = serializers.DateTimeField()


class PriceBreakdownSerializer(serializers.Serializer):
    base = serializers.DecimalField(max_digits=10, decimal_places=2)
    distance = serializers.DecimalField(max_digits=10, decimal_places=2)
    weight = serializers.DecimalField(max_digits=10, decimal_places=2)
    express = serializers.DecimalField(max_digits=10, decimal_places=2)
    insurance = serializers.DecimalField(max_digits=10, decimal_places=2)


class QuoteSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    distance_km = serializers.FloatField()
    duration_minutes = serializers.FloatField(allow_null=True)
    breakdown = PriceBreakdownSerializer()


# --- drivers ---

class DriverRegistrationSerializer(serializers.Serializer):
    license_number = serializers.CharField(max_length=50, required=False, allow_null=True)
    vehicle_type = serializers.CharField(max_length=50, required=False, allow_null=True)
    vehicle_plate = serializers.CharField(max_length=20, required=False, allow_null=True)


class DriverProfileSerializer(DriverRegistrationSerializer):
    pass


class DriverStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[s.value for s in DriverStatus])


class ParcelRefSerializer(serializers.Serializer):
    parcel_id = serializers.CharField()


class DriverSerializer(serializers.Serializer):
    id = serializers.CharField()
    user_id = serializers.CharField()
    status = EnumValueField()
    license_number = serializers.CharField(allow_null=True)
    vehicle_type = serializers.CharField(allow_null=True)
    vehicle_plate = serializers.CharField(allow_null=True)
    current_location = CoordinateSerializer(allow_null=True)
    updated_at = serializers.DateTimeField()


class AssignmentSerializer(serializers.Serializer):
    id = serializers.CharField()
    parcel_id = serializers.CharField()
    driver_id = serializers.CharField()
    assigned_by = serializers.CharField()
    status = EnumValueField()
    assigned_at = serializers.DateTimeField()


# --- payments ---

class PaymentInitSerializer(serializers.Serializer):
    parcel_id = serializers.CharField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    payment_method = serializers.ChoiceField(choices=[m.value for m in PaymentMethod], default=PaymentMethod.PAYNOW.value)


class PaymentConfirmSerializer(serializers.Serializer):
    payment_id = serializers.CharField()
    transaction_id = serializers.CharField()


class PaymentRefundSerializer(serializers.Serializer):
    payment_id = serializers.CharField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)


class PaymentSerializer(serializers.Serializer):
    id = serializers.CharField()
    parcel_id = serializers.CharField()
    user_id = serializers.CharField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    payment_method = EnumValueField()
    payment_status = EnumValueField()
    transaction_id = serializers.CharField(allow_null=True)
    refunded_amount = serializers.DecimalField(max_digits=10, decimal_places=2, allow_null=True)
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField()


class CheckoutSerializer(serializers.Serializer):
    redirect_url = serializers.CharField(allow_null=True)
    poll_url = serializers.CharField()
    instructions = serializers.CharField(allow_null=True)


# --- pricing rules ---

class PricingRuleSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    rule_name = serializers.CharField(max_length=255)
    base_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    price_per_km = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=0)
    price_per_kg = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=0)
    weight_included_kg = serializers.DecimalField(max_digits=9, decimal_places=3, min_value=0, default="5")
    express_surcharge = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, default="0")
    insurance_fee = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, default="0")
    min_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, default="0")
    max_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True)
    is_active = serializers.BooleanField(default=False)
    created_at = serializers.DateTimeField(read_only=True)
