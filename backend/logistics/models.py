from django.db import models
from django.db.models import Q
from phonenumber_field.modelfields import PhoneNumberField

# Primary keys are the core's uuid4 strings, so rows map 1:1 to domain records.
# Users are referenced by id only; the core does not own authentication.


class PricingRule(models.Model):
    """
    Rate card. Exactly one row may have is_active=True (partial unique index).
    """
    id = models.CharField(primary_key=True, max_length=36)
    rule_name = models.CharField(max_length=255)
    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    price_per_km = models.DecimalField(max_digits=12, decimal_places=4)
    price_per_kg = models.DecimalField(max_digits=12, decimal_places=4)
    weight_included_kg = models.DecimalField(max_digits=9, decimal_places=3, default=5)
    express_surcharge = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    insurance_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    min_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    max_price = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    is_active = models.BooleanField(default=False)
    created_at = models.DateTimeField()

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["is_active"], condition=Q(is_active=True), name="single_active_pricing_rule"
            ),
        ]

    def __str__(self):
        return f"{self.rule_name} ({'active' if self.is_active else 'inactive'})"


class Parcel(models.Model):
    """
    Central model for the delivery workflow.
    Tracks lifecycle: Created -> Picked Up -> In Transit -> Out for Delivery -> Delivered
    (or Failed / Returned). Never deleted.
    """
    class Status(models.TextChoices):
        CREATED = "created", "Created"
        PICKED_UP = "picked_up", "Picked Up"
        IN_TRANSIT = "in_transit", "In Transit"
        OUT_FOR_DELIVERY = "out_for_delivery", "Out for Delivery"
        DELIVERED = "delivered", "Delivered"
        FAILED = "failed", "Failed"
        RETURNED = "returned", "Returned"

    class ServiceType(models.TextChoices):
        STANDARD = "standard", "Standard"
        EXPRESS = "express", "Express"

    id = models.CharField(primary_key=True, max_length=36)
    tracking_id = models.CharField(max_length=10, unique=True)
    sender_id = models.CharField(max_length=64, db_index=True)

    recipient_name = models.CharField(max_length=255)
    # Validated against the default region (+263...) at the API edge
    recipient_phone = PhoneNumberField()
    pickup_address = models.TextField()
    delivery_address = models.TextField()

    weight = models.DecimalField(max_digits=9, decimal_places=3)
    service_type = models.CharField(max_length=20, choices=ServiceType.choices, default=ServiceType.STANDARD)
    insurance = models.BooleanField(default=False)
    parcel_type = models.CharField(max_length=50, blank=True, null=True)
    description = models.TextField(blank=True, null=True)

    price = models.DecimalField(max_digits=10, decimal_places=2)
    distance_km = models.FloatField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.CREATED)
    current_location = models.TextField(blank=True, null=True)
    estimated_delivery_date = models.DateField()
    actual_delivery_date = models.DateField(blank=True, null=True)

    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    def __str__(self):
        return f"Parcel {self.tracking_id} - {self.status}"


class StatusHistory(models.Model):
    """Append-only; one row per transition, including the initial 'created'."""
    parcel = models.ForeignKey(Parcel, on_delete=models.CASCADE, related_name="history")
    status = models.CharField(max_length=20, choices=Parcel.Status.choices)
    location = models.TextField(blank=True, null=True)
    updated_by = models.CharField(max_length=64)
    notes = models.TextField(blank=True, default="")
    timestamp = models.DateTimeField()

    class Meta:
        ordering = ["timestamp", "id"]


class Driver(models.Model):
    class Status(models.TextChoices):
        AVAILABLE = "available", "Available"
        BUSY = "busy", "Busy"
        OFFLINE = "offline", "Offline"

    id = models.CharField(primary_key=True, max_length=36)
    user_id = models.CharField(max_length=64, unique=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.OFFLINE)
    license_number = models.CharField(max_length=50, blank=True, null=True)
    # vehicle_type: e.g., 'Bike', 'Car', 'Van'
    vehicle_type = models.CharField(max_length=50, blank=True, null=True)
    vehicle_plate = models.CharField(max_length=20, blank=True, null=True)
    current_lat = models.FloatField(blank=True, null=True)
    current_lng = models.FloatField(blank=True, null=True)
    updated_at = models.DateTimeField()

    def __str__(self):
        return f"Driver {self.user_id} ({self.status})"


class Assignment(models.Model):
    """
    OneToOne on parcel: the database itself refuses a second assignment.
    """
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    id = models.CharField(primary_key=True, max_length=36)
    parcel = models.OneToOneField(Parcel, on_delete=models.PROTECT, related_name="assignment")
    driver = models.ForeignKey(Driver, on_delete=models.PROTECT, related_name="assignments")
    assigned_by = models.CharField(max_length=64)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    assigned_at = models.DateTimeField()

    class Meta:
        ordering = ["-assigned_at"]


class Payment(models.Model):
    class PaymentMethod(models.TextChoices):
        PAYNOW = "paynow", "Paynow"
        COD = "cod", "Cash on Delivery"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        REFUNDED = "refunded", "Refunded"

    id = models.CharField(primary_key=True, max_length=36)
    parcel = models.ForeignKey(Parcel, on_delete=models.PROTECT, related_name="payments")
    user_id = models.CharField(max_length=64, db_index=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.PAYNOW)
    payment_status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    transaction_id = models.CharField(max_length=255, blank=True, null=True)
    provider_reference = models.CharField(max_length=64, blank=True, null=True, unique=True)
    poll_url = models.URLField(max_length=500, blank=True, null=True)
    refunded_amount = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["parcel"], condition=Q(payment_status="completed"), name="single_completed_payment_per_parcel"
            ),
        ]
