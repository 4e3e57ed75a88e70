# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Nonce binding for verified organizations.

A nonce is the pseudonymous credential an organization presents with every
contribution. Each organization has at most one active nonce; a nonce
belongs to exactly one organization and never validates again once revoked.

Lifecycle per organization::

    Unverified --bind--> Bound --revoke--> Revoked --bind--> Bound (new nonce)
                         Bound --rotate--> Bound (new nonce, old one revoked)

Usage:
    service = NonceBindingService(identities, bindings)
    outcome = await service.generate_and_bind(org_id, public_key)

    # At ingestion
    check = await service.validate(org_id, presented_nonce)
    if not check.valid:
        reject(check.reason)
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from ..core.exceptions import InvariantViolation, NotFoundError, ValidationException
from ..core.locking import OrgLockRegistry
from .models import BindingOutcome, NonceBinding, NonceValidationResult, OrganizationIdentity

if TYPE_CHECKING:
    from ..storage.base import IdentityStore, NonceBindingStore

logger = logging.getLogger(__name__)

# 32 random bytes -> 64 hex characters
NONCE_BYTES = 32

# Public keys: hex encoding of 32 to 256 bytes
PUBLIC_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64,512}$")

MAX_NONCE_ATTEMPTS = 5


def is_valid_public_key(public_key: str) -> bool:
    return bool(PUBLIC_KEY_PATTERN.match(public_key or ""))


def sign_binding(nonce: str, public_key: str) -> str:
    """Binding signature: sha256 over nonce followed by public key, hex."""
    return hashlib.sha256(f"{nonce}{public_key}".encode()).hexdigest()


# =============================================================================
# NONCE CODECS
# =============================================================================


@dataclass
class NoncePayload:
    org_id: str
    issued_at: int
    salt: str


class NonceCodec(Protocol):
    """Produces nonce tokens and, where possible, reads them back."""

    def encode(self, org_id: str) -> str: ...

    def decode(self, token: str) -> NoncePayload | None: ...


class RandomNonceCodec:
    """Opaque random tokens carrying no data."""

    def encode(self, org_id: str) -> str:
        return secrets.token_hex(NONCE_BYTES)

    def decode(self, token: str) -> NoncePayload | None:
        return None


class HmacNonceCodec:
    """Tokens that embed the organization id under an HMAC-SHA256 tag.

    Format: ``base64url(org_id:issued_at:salt).hex(hmac)``
    """

    def __init__(self, secret: str | bytes):
        if not secret:
            raise ValidationException("HMAC nonce secret must not be empty", field="secret")
        self._key = secret.encode() if isinstance(secret, str) else secret

    def _mac(self, payload: bytes) -> str:
        return hmac.new(self._key, payload, hashlib.sha256).hexdigest()

    def encode(self, org_id: str) -> str:
        payload = f"{org_id}:{int(time.time())}:{secrets.token_hex(16)}".encode()
        body = base64.urlsafe_b64encode(payload).decode().rstrip("=")
        return f"{body}.{self._mac(payload)}"

    def decode(self, token: str) -> NoncePayload | None:
        """Decode and authenticate a token.

        Raises:
            ValidationException: If the token is malformed or its tag is wrong.
        """
        body, sep, tag = token.rpartition(".")
        if not sep or not body:
            raise ValidationException("Malformed nonce token", field="nonce")
        try:
            payload = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
        except ValueError as e:
            raise ValidationException("Malformed nonce token", field="nonce") from e
        if not hmac.compare_digest(self._mac(payload), tag):
            raise ValidationException("Nonce token signature mismatch", field="nonce")

        org_id, issued_at, salt = payload.decode().rsplit(":", 2)
        return NoncePayload(org_id=org_id, issued_at=int(issued_at), salt=salt)


# =============================================================================
# SERVICE
# =============================================================================


class NonceBindingService:
    """Issues, validates, rotates and revokes organization nonces."""

    def __init__(
        self,
        identities: IdentityStore,
        bindings: NonceBindingStore,
        codec: NonceCodec | None = None,
        locks: OrgLockRegistry | None = None,
    ):
        self.identities = identities
        self.bindings = bindings
        self.codec = codec or RandomNonceCodec()
        self.locks = locks or OrgLockRegistry()

    async def get_current_binding(self, org_id: str) -> NonceBinding | None:
        """The binding the organization's identity points at (may be revoked)."""
        identity = await self.identities.get_identity(org_id)
        if identity is None or not identity.bound_nonce:
            return None
        return await self.bindings.get_binding_by_nonce(identity.bound_nonce)

    async def generate_and_bind(self, org_id: str, public_key: str) -> BindingOutcome:
        """Issue a nonce for a verified organization.

        Raises:
            NotFoundError: If the organization has no verified identity.
            InvariantViolation: If an active binding exists or the key is malformed.
        """
        async with self.locks.hold(org_id):
            identity = await self._require_identity(org_id)
            current = await self._binding_for(identity)
            if current is not None and not current.is_revoked:
                raise InvariantViolation(
                    f"Organization {org_id} already has an active nonce binding",
                    org_id=org_id,
                )
            return await self._bind(identity, public_key, previous=current)

    async def validate(self, org_id: str, nonce: str) -> NonceValidationResult:
        """Check a presented nonce. Never raises for an invalid nonce."""
        identity = await self.identities.get_identity(org_id)
        if identity is None:
            return NonceValidationResult(False, f"Organization identity not found: {org_id}")

        binding = await self._binding_for(identity)
        if binding is None:
            return NonceValidationResult(False, "No nonce binding found")

        if binding.is_revoked:
            return NonceValidationResult(False, f"Nonce revoked: {binding.revocation_reason}", binding)

        if not hmac.compare_digest(binding.nonce, nonce):
            return NonceValidationResult(False, "Nonce mismatch", binding)

        if not hmac.compare_digest(binding.signature, sign_binding(binding.nonce, binding.public_key)):
            logger.warning(f"Binding signature check failed for {org_id}")
            return NonceValidationResult(False, "Invalid signature", binding)

        try:
            payload = self.codec.decode(nonce)
        except ValidationException as e:
            return NonceValidationResult(False, e.message, binding)
        if payload is not None and payload.org_id != org_id:
            return NonceValidationResult(False, "Nonce was issued to a different organization", binding)

        return NonceValidationResult(True, None, binding)

    async def revoke(self, org_id: str, reason: str) -> NonceBinding:
        """Revoke the organization's current binding.

        Raises:
            InvariantViolation: If there is no binding or it is already revoked.
        """
        async with self.locks.hold(org_id):
            identity = await self._require_identity(org_id)
            binding = await self._binding_for(identity)
            if binding is None:
                raise InvariantViolation(f"No nonce binding found for organization {org_id}", org_id=org_id)
            if binding.is_revoked:
                raise InvariantViolation(f"Nonce binding for {org_id} is already revoked", org_id=org_id)

            await self._revoke(binding, reason)
            logger.info(f"Revoked nonce for {org_id}: {reason}")
            return binding

    async def rotate(
        self,
        org_id: str,
        reason: str,
        new_public_key: str | None = None,
    ) -> BindingOutcome:
        """Revoke the active nonce and issue a successor in one step.

        Raises:
            InvariantViolation: If there is no active binding, or the new key is malformed.
        """
        async with self.locks.hold(org_id):
            identity = await self._require_identity(org_id)
            current = await self._binding_for(identity)
            if current is None:
                raise InvariantViolation(f"No nonce binding found for organization {org_id}", org_id=org_id)
            if current.is_revoked:
                raise InvariantViolation(f"Cannot rotate revoked nonce for organization {org_id}", org_id=org_id)

            public_key = new_public_key or current.public_key
            if not is_valid_public_key(public_key):
                raise InvariantViolation("Public key must be 64-512 hex characters", org_id=org_id)

            await self._revoke(current, f"Rotated: {reason}")
            outcome = await self._bind(identity, public_key, previous=current)
            logger.info(f"Rotated nonce for {org_id}: {reason}")
            return outcome

    async def record_usage(self, org_id: str, nonce: str) -> NonceBinding:
        """Count one accepted contribution against a valid nonce.

        Raises:
            InvariantViolation: If the nonce is not the organization's valid nonce.
        """
        async with self.locks.hold(org_id):
            check = await self.validate(org_id, nonce)
            if not check.valid or check.binding is None:
                raise InvariantViolation(
                    f"Nonce is not bound to organization {org_id}: {check.reason}",
                    org_id=org_id,
                )
            binding = check.binding
            binding.usage_count += 1
            await self.bindings.save_binding(binding)
            return binding

    async def get_rotation_history(self, org_id: str) -> list[NonceBinding]:
        """The chain of bindings ending at the current one, oldest first."""
        history: list[NonceBinding] = []
        binding = await self.get_current_binding(org_id)
        seen: set[str] = set()
        while binding is not None and binding.nonce not in seen:
            seen.add(binding.nonce)
            history.append(binding)
            if not binding.previous_nonce:
                break
            binding = await self.bindings.get_binding_by_nonce(binding.previous_nonce)
        history.reverse()
        return history

    # -------------------------------------------------------------------------
    # Internals (callers hold the org lock)
    # -------------------------------------------------------------------------

    async def _require_identity(self, org_id: str) -> OrganizationIdentity:
        identity = await self.identities.get_identity(org_id)
        if identity is None:
            raise NotFoundError("Organization identity", org_id)
        return identity

    async def _binding_for(self, identity: OrganizationIdentity) -> NonceBinding | None:
        if not identity.bound_nonce:
            return None
        return await self.bindings.get_binding_by_nonce(identity.bound_nonce)

    async def _fresh_nonce(self, org_id: str) -> str:
        for _ in range(MAX_NONCE_ATTEMPTS):
            nonce = self.codec.encode(org_id)
            if await self.bindings.get_binding_by_nonce(nonce) is None:
                return nonce
        raise InvariantViolation("Could not generate a unique nonce", org_id=org_id)

    async def _revoke(self, binding: NonceBinding, reason: str) -> None:
        binding.revoked_at = datetime.now(UTC)
        binding.revocation_reason = reason
        await self.bindings.save_binding(binding)

    async def _bind(
        self,
        identity: OrganizationIdentity,
        public_key: str,
        previous: NonceBinding | None,
    ) -> BindingOutcome:
        if not is_valid_public_key(public_key):
            raise InvariantViolation("Public key must be 64-512 hex characters", org_id=identity.org_id)

        nonce = await self._fresh_nonce(identity.org_id)
        binding = NonceBinding(
            nonce=nonce,
            org_id=identity.org_id,
            public_key=public_key,
            method=identity.method,
            signature=sign_binding(nonce, public_key),
            previous_nonce=previous.nonce if previous else None,
        )
        await self.bindings.save_binding(binding)

        identity.bound_nonce = nonce
        identity.public_key = public_key
        await self.identities.save_identity(identity)

        logger.info(f"Bound nonce for {identity.org_id} ({identity.method})")
        return BindingOutcome(binding=binding, is_new=previous is None, previous_binding=previous)
