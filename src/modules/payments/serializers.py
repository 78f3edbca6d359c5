"""Payment DRF serializers for API input."""

from __future__ import annotations

from rest_framework import serializers


class VerifyOtpSerializer(serializers.Serializer):
    code = serializers.RegexField(
        r"^\d+$",
        min_length=4,
        max_length=8,
        error_messages={"invalid": "Code must contain digits only."},
    )
    payer_code = serializers.RegexField(
        r"^\+?\d+$",
        min_length=5,
        max_length=20,
        error_messages={"invalid": "Payer code must be a mobile-money number."},
    )
