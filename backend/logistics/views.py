from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core.actors import Actor, ActorRole
from core.errors import ParcelNotFound
from drivers.models import DriverProfileUpdate, DriverStatus
from parcels.models import NewParcelRequest
from pricing.models import PricingRule, PricingRuleUpdate
from routing.models import Coordinate

from .apps import get_core
from .serializers import (
    AssignmentSerializer,
    CheckoutSerializer,
    CoordinateSerializer,
    DriverProfileSerializer,
    DriverRegistrationSerializer,
    DriverSerializer,
    DriverStatusSerializer,
    NewParcelSerializer,
    ParcelRefSerializer,
    ParcelSerializer,
    PaymentConfirmSerializer,
    PaymentInitSerializer,
    PaymentRefundSerializer,
    PaymentSerializer,
    PricingRuleSerializer,
    PublicParcelSerializer,
    QuoteSerializer,
    StatusHistorySerializer,
    StatusUpdateSerializer,
)


def actor_for(request) -> Actor:
    """
    Role by user:
    - staff: admin
    - has a driver profile: driver
    - everyone else: customer
    """
    user = request.user
    if user.is_staff:
        return Actor.new(user.pk, ActorRole.ADMIN)
    if get_core().store.get_driver_by_user(str(user.pk)) is not None:
        return Actor.new(user.pk, ActorRole.DRIVER)
    return Actor.new(user.pk, ActorRole.CUSTOMER)


def _validated(serializer_class, request, partial=False):
    serializer = serializer_class(data=request.data, partial=partial)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def _new_parcel_request(request) -> NewParcelRequest:
    data = _validated(NewParcelSerializer, request)
    return NewParcelRequest(
        sender_id=str(request.user.pk),
        recipient_name=data["recipient_name"],
        recipient_phone=str(data["recipient_phone"]),
        pickup_address=data["pickup_address"],
        delivery_address=data["delivery_address"],
        weight=data["weight"],
        service_type=data["service_type"],
        insurance=data["insurance"],
        parcel_type=data.get("parcel_type"),
        description=data.get("description"),
    )


class ParcelViewSet(viewsets.ViewSet):
    """
    Parcel creation, quoting, status management and public tracking.
    """
    permission_classes = [permissions.IsAuthenticated]

    def list(self, request):
        parcels = get_core().dispatcher.list_parcels(actor_for(request))
        return Response(ParcelSerializer(parcels, many=True).data)

    def create(self, request):
        parcel = get_core().dispatcher.create_parcel(_new_parcel_request(request))
        return Response(ParcelSerializer(parcel).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        """
        Visible to the sender, the assigned driver and admins. Anyone else
        gets the same 404 as for a missing parcel.
        """
        core = get_core()
        actor = actor_for(request)
        parcel = core.dispatcher.get_parcel(pk)
        if not self._can_view(core, actor, parcel):
            raise ParcelNotFound(f"Parcel {pk} not found", parcel_id=pk)
        return Response(ParcelSerializer(parcel).data)

    @action(detail=False, methods=["post"])
    def quote(self, request):
        price_quote, eta = get_core().dispatcher.quote(_new_parcel_request(request))
        data = QuoteSerializer(price_quote).data
        data["estimated_delivery_date"] = eta.isoformat()
        return Response(data)

    @action(detail=True, methods=["post", "patch"], url_path="status")
    def update_status(self, request, pk=None):
        """
        Driver holding the assignment, or an admin, moves the parcel along.
        """
        data = _validated(StatusUpdateSerializer, request)
        parcel = get_core().dispatcher.update_parcel_status(
            actor_for(request), pk, data["status"], location=data.get("location"), notes=data.get("notes")
        )
        return Response(ParcelSerializer(parcel).data)

    @action(detail=True, methods=["get"])
    def history(self, request, pk=None):
        core = get_core()
        parcel = core.dispatcher.get_parcel(pk)
        if not self._can_view(core, actor_for(request), parcel):
            raise ParcelNotFound(f"Parcel {pk} not found", parcel_id=pk)
        history = core.dispatcher.parcel_history(pk)
        return Response(StatusHistorySerializer(history, many=True).data)

    @action(
        detail=False,
        methods=["get"],
        url_path=r"track/(?P<tracking_id>[A-Za-z0-9]+)",
        permission_classes=[permissions.AllowAny],
    )
    def track(self, request, tracking_id=None):
        parcel, history = get_core().dispatcher.track_parcel(tracking_id)
        return Response({
            "parcel": PublicParcelSerializer(parcel).data,
            "history": StatusHistorySerializer(history, many=True).data,
        })

    @staticmethod
    def _can_view(core, actor, parcel) -> bool:
        if actor.is_admin or parcel.sender_id == actor.id:
            return True
        if actor.role == ActorRole.DRIVER:
            assignment = core.store.get_assignment_for_parcel(parcel.id)
            driver = core.store.get_driver_by_user(actor.id)
            return assignment is not None and driver is not None and assignment.driver_id == driver.id
        return False


class DriverViewSet(viewsets.ViewSet):
    """
    Driver self-service under /drivers/me/..., admin listing and assignment.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get_permissions(self):
        if self.action in ("list", "available", "assign"):
            return [permissions.IsAdminUser()]
        return super().get_permissions()

    def _me(self, request):
        return get_core().dispatcher.get_driver_for_user(str(request.user.pk))

    def list(self, request):
        drivers = get_core().dispatcher.list_drivers(request.query_params.get("status"))
        return Response(DriverSerializer(drivers, many=True).data)

    def create(self, request):
        data = _validated(DriverRegistrationSerializer, request)
        driver = get_core().dispatcher.register_driver(
            str(request.user.pk),
            license_number=data.get("license_number"),
            vehicle_type=data.get("vehicle_type"),
            vehicle_plate=data.get("vehicle_plate"),
        )
        return Response(DriverSerializer(driver).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"])
    def available(self, request):
        drivers = get_core().dispatcher.list_drivers(DriverStatus.AVAILABLE)
        return Response(DriverSerializer(drivers, many=True).data)

    @action(detail=True, methods=["post"])
    def assign(self, request, pk=None):
        data = _validated(ParcelRefSerializer, request)
        assignment = get_core().dispatcher.assign_parcel(str(request.user.pk), pk, data["parcel_id"])
        return Response(AssignmentSerializer(assignment).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"])
    def me(self, request):
        return Response(DriverSerializer(self._me(request)).data)

    @action(detail=False, methods=["post"], url_path="me/status")
    def me_status(self, request):
        data = _validated(DriverStatusSerializer, request)
        driver = get_core().dispatcher.set_driver_availability(self._me(request).id, data["status"])
        return Response(DriverSerializer(driver).data)

    @action(detail=False, methods=["post"], url_path="me/location")
    def me_location(self, request):
        data = _validated(CoordinateSerializer, request)
        location = Coordinate(latitude=data["latitude"], longitude=data["longitude"])
        driver = get_core().dispatcher.update_driver_location(self._me(request).id, location)
        return Response(DriverSerializer(driver).data)

    @action(detail=False, methods=["patch"], url_path="me/profile")
    def me_profile(self, request):
        data = _validated(DriverProfileSerializer, request, partial=True)
        update = DriverProfileUpdate(
            license_number=data.get("license_number"),
            vehicle_type=data.get("vehicle_type"),
            vehicle_plate=data.get("vehicle_plate"),
        )
        driver = get_core().dispatcher.update_driver_profile(self._me(request).id, update)
        return Response(DriverSerializer(driver).data)

    @action(detail=False, methods=["post"], url_path="me/claim")
    def me_claim(self, request):
        data = _validated(ParcelRefSerializer, request)
        assignment = get_core().dispatcher.claim_parcel(str(request.user.pk), data["parcel_id"])
        return Response(AssignmentSerializer(assignment).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="me/assignments")
    def me_assignments(self, request):
        assignments = get_core().dispatcher.driver_assignments(self._me(request).id)
        return Response(AssignmentSerializer(assignments, many=True).data)

    @action(detail=False, methods=["get"], url_path="me/available-parcels")
    def me_available_parcels(self, request):
        self._me(request)
        parcels = get_core().dispatcher.list_available_parcels()
        return Response(ParcelSerializer(parcels, many=True).data)


class PaymentViewSet(viewsets.ViewSet):
    """
    Payment initiation and reconciliation.
    The provider callback is public but settles nothing on its own say-so.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get_permissions(self):
        if self.action == "callback":
            return [permissions.AllowAny()]
        if self.action in ("confirm", "refund"):
            return [permissions.IsAdminUser()]
        return super().get_permissions()

    @action(detail=False, methods=["post"])
    def initialize(self, request):
        data = _validated(PaymentInitSerializer, request)
        initiation = get_core().payments.initiate(
            data["parcel_id"], str(request.user.pk), data["amount"], data["payment_method"]
        )
        body = {
            "payment": PaymentSerializer(initiation.payment).data,
            "checkout": CheckoutSerializer(initiation.checkout).data if initiation.checkout else None,
            "degraded": initiation.degraded,
        }
        return Response(body, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"])
    def confirm(self, request):
        data = _validated(PaymentConfirmSerializer, request)
        payment = get_core().payments.confirm(data["payment_id"], data["transaction_id"])
        return Response(PaymentSerializer(payment).data)

    @action(detail=False, methods=["post"])
    def callback(self, request):
        """
        Paynow result URL. Only `reference` is read from the body; the
        outcome comes from polling Paynow ourselves.
        """
        reference = request.data.get("reference")
        if not reference:
            return Response({"error": "validation_error", "detail": "reference is required"},
                            status=status.HTTP_400_BAD_REQUEST)
        payment = get_core().payments.handle_provider_callback(reference)
        return Response({"payment_id": payment.id, "payment_status": payment.payment_status.value})

    @action(detail=False, methods=["post"])
    def refund(self, request):
        data = _validated(PaymentRefundSerializer, request)
        payment = get_core().payments.refund(data["payment_id"], data.get("amount"))
        return Response(PaymentSerializer(payment).data)

    @action(detail=False, methods=["get"])
    def history(self, request):
        payments = get_core().payments.payment_history(str(request.user.pk))
        return Response(PaymentSerializer(payments, many=True).data)


class PricingRuleViewSet(viewsets.ViewSet):
    """
    Rate cards. Reading the active rule is open to any signed-in user;
    everything else is admin only.
    """
    permission_classes = [permissions.IsAdminUser]

    def get_permissions(self):
        if self.action == "active":
            return [permissions.IsAuthenticated()]
        return super().get_permissions()

    def list(self, request):
        return Response(PricingRuleSerializer(get_core().pricing.list_rules(), many=True).data)

    def create(self, request):
        data = _validated(PricingRuleSerializer, request)
        rule = PricingRule.new(
            rule_name=data["rule_name"],
            base_price=data["base_price"],
            price_per_km=data["price_per_km"],
            price_per_kg=data["price_per_kg"],
            express_surcharge=data["express_surcharge"],
            insurance_fee=data["insurance_fee"],
            min_price=data["min_price"],
            weight_included_kg=data["weight_included_kg"],
            max_price=data.get("max_price"),
        )
        rule = get_core().pricing.create_rule(rule, activate=data["is_active"])
        return Response(PricingRuleSerializer(rule).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        data = _validated(PricingRuleSerializer, request, partial=True)
        update = PricingRuleUpdate(
            rule_name=data.get("rule_name"),
            base_price=data.get("base_price"),
            price_per_km=data.get("price_per_km"),
            price_per_kg=data.get("price_per_kg"),
            weight_included_kg=data.get("weight_included_kg"),
            express_surcharge=data.get("express_surcharge"),
            insurance_fee=data.get("insurance_fee"),
            min_price=data.get("min_price"),
            max_price=data.get("max_price"),
            clear_max_price="max_price" in data and data["max_price"] is None,
        )
        rule = get_core().pricing.update_rule(pk, update)
        return Response(PricingRuleSerializer(rule).data)

    @action(detail=True, methods=["post"])
    def activate(self, request, pk=None):
        rule = get_core().pricing.activate_rule(pk)
        return Response(PricingRuleSerializer(rule).data)

    @action(detail=False, methods=["get"])
    def active(self, request):
        rule = get_core().pricing.get_active_rule()
        return Response(PricingRuleSerializer(rule).data)
