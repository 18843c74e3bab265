"""Authenticated principal passed explicitly into every core operation."""

from dataclasses import dataclass

ROLE_CUSTOMER = "customer"
ROLE_DRIVER = "driver"
ROLES = (ROLE_CUSTOMER, ROLE_DRIVER)


@dataclass(frozen=True)
class Principal:
    id: int
    role: str

    # Lets DRF's IsAuthenticated accept a Principal as request.user
    is_authenticated = True
    is_anonymous = False

    @property
    def is_customer(self) -> bool:
        return self.role == ROLE_CUSTOMER

    @property
    def is_driver(self) -> bool:
        return self.role == ROLE_DRIVER

    def __str__(self):
        return f"{self.role}:{self.id}"
