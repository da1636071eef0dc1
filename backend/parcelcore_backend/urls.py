from django.urls import include, path
from rest_framework.routers import DefaultRouter

from logistics.views import DriverViewSet, ParcelViewSet, PaymentViewSet, PricingRuleViewSet

router = DefaultRouter()
router.register(r'parcels', ParcelViewSet, basename='parcel')
router.register(r'drivers', DriverViewSet, basename='driver')
router.register(r'payments', PaymentViewSet, basename='payment')
router.register(r'pricing-rules', PricingRuleViewSet, basename='pricing-rule')

urlpatterns = [
    path('api/v1/', include(router.urls)),
]
