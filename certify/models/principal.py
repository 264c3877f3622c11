from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated wallet extracted from a validated JWT.

    address: lowercase account address (the JWT subject)
    roles:   "holder" for every wallet, plus "issuer" for authorized issuers
    """

    address: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_issuer(self) -> bool:
        return "issuer" in self.roles
