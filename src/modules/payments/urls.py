"""Payment URL configuration."""

from __future__ import annotations

from rest_framework.routers import DefaultRouter

from modules.payments.views import PaymentSessionViewSet

router = DefaultRouter(trailing_slash=True)
router.register("payments", PaymentSessionViewSet, basename="payment")

urlpatterns = router.urls
