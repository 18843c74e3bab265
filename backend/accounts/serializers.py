from rest_framework import serializers

from common.principal import ROLES, ROLE_DRIVER
from .models import Account

PHONE_REGEX = r"^\+?[0-9]{4,15}$"


class AccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = Account
        fields = ["id", "role", "phone_number", "name", "vehicle_number", "created_at"]
        read_only_fields = fields


class AccountContactSerializer(serializers.ModelSerializer):
    """What one party of a ride sees of the other."""
    class Meta:
        model = Account
        fields = ["id", "name", "phone_number", "vehicle_number"]
        read_only_fields = fields


class OTPRequestSerializer(serializers.Serializer):
    phone = serializers.RegexField(PHONE_REGEX)
    role = serializers.ChoiceField(choices=ROLES)


class OTPVerifySerializer(serializers.Serializer):
    phone = serializers.RegexField(PHONE_REGEX)
    code = serializers.RegexField(r"^[0-9]{4,10}$")
    role = serializers.ChoiceField(choices=ROLES)

    # Only used the first time a phone logs in for a role
    name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    vehicle_number = serializers.CharField(required=False, allow_blank=True, max_length=20)

    def validate(self, data):
        first_login = not Account.objects.filter(
            phone_number=data["phone"], role=data["role"]
        ).exists()
        if first_login and data["role"] == ROLE_DRIVER and not data.get("vehicle_number"):
            raise serializers.ValidationError({
                "vehicle_number": "Vehicle number is required for drivers"
            })
        return data
