import logging

from django.conf import settings
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated

from common.exceptions import Unauthenticated
from .models import Account
from .otp import get_otp_authenticator
from .serializers import AccountSerializer, OTPRequestSerializer, OTPVerifySerializer
from .sessions import get_session_registry

logger = logging.getLogger(__name__)


class OTPRequestView(APIView):
    """
    Send a login OTP, superseding any earlier one for the phone.

    POST Body:
    {
        "phone": "01700000000",
        "role": "driver"  // or "customer"
    }
    """
    permission_classes = (AllowAny,)
    authentication_classes = []

    def post(self, request):
        serializer = OTPRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        phone = serializer.validated_data["phone"]
        role = serializer.validated_data["role"]

        authenticator = get_otp_authenticator()
        authenticator.invalidate(phone)
        code = authenticator.issue(phone, purpose=f"{role}_login")

        body = {
            "message": "OTP sent",
            "expires_in": int(authenticator.ttl.total_seconds()),
        }
        # No SMS gateway here; expose the code in development only
        if settings.DEBUG:
            body["otp"] = code
        return Response(body, status=status.HTTP_201_CREATED)


class OTPVerifyView(APIView):
    """
    Exchange a valid OTP for a session token. Creates the account on first login.

    POST Body:
    {
        "phone": "01700000000",
        "code": "123456",
        "role": "driver",
        "name": "Rahim",               // optional
        "vehicle_number": "DHA-1234"   // required on a driver's first login
    }
    """
    permission_classes = (AllowAny,)
    authentication_classes = []

    def post(self, request):
        serializer = OTPVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if not get_otp_authenticator().verify(
            data["phone"], data["code"], purpose=f"{data['role']}_login"
        ):
            raise Unauthenticated("invalid or expired OTP")

        account = _get_or_create_account(data)
        registry = get_session_registry()
        token = registry.issue(account.id, account.role)

        return Response({
            "message": "Login successful",
            "account": AccountSerializer(account).data,
            "token": token,
        })


class LogoutView(APIView):
    """Revoke the caller's session token."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        get_session_registry().revoke(request.user.id, request.user.role)
        return Response({"message": "Logged out"})


def _get_or_create_account(data) -> Account:
    defaults = {
        "name": data.get("name", ""),
        "vehicle_number": data.get("vehicle_number", ""),
    }
    account, created = Account.objects.get_or_create(
        phone_number=data["phone"], role=data["role"], defaults=defaults
    )
    if created:
        logger.info("Created %s account %s for %s", account.role, account.id, account.phone_number)
    return account
