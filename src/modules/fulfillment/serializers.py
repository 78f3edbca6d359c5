"""Batch DRF serializers for API input.

Responses are rendered from the DTOs in ``dtos.py``; these serializers
only validate request payloads.
"""

from __future__ import annotations

import base64
import binascii

from rest_framework import serializers


class Base64ImageField(serializers.Field):
    """Accepts a base64 string (optionally a ``data:`` URI) and yields bytes."""

    default_error_messages = {
        "invalid": "Image must be a base64 encoded string.",
        "empty": "Image must not be empty.",
    }

    def to_internal_value(self, data):
        if not isinstance(data, str):
            self.fail("invalid")
        if data.startswith("data:") and "," in data:
            data = data.split(",", 1)[1]
        try:
            decoded = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            self.fail("invalid")
        if not decoded:
            self.fail("empty")
        return decoded

    def to_representation(self, value):
        return base64.b64encode(value).decode("ascii")


class ToggleItemSerializer(serializers.Serializer):
    found = serializers.BooleanField()
    found_quantity = serializers.DecimalField(
        max_digits=10, decimal_places=3, required=False, allow_null=True, default=None
    )


class ProofSerializer(serializers.Serializer):
    image = Base64ImageField()
