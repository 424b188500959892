"""
Erreurs métier.

Chaque erreur porte un `kind` stable (exposé tel quel par l'API) et le code
HTTP équivalent. Les erreurs de validation / d'état ne sont jamais rejouées ;
seule TransientStoreError est "retryable".
"""

from __future__ import annotations

from typing import Any


class OchaError(Exception):
    kind = "error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, **self.details}


class ValidationError(OchaError):
    kind = "validation_error"
    http_status = 422


class NotFound(OchaError):
    kind = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, id=entity_id)


class PreconditionFailed(OchaError):
    kind = "precondition_failed"
    http_status = 409


class InvalidStateTransition(PreconditionFailed):
    kind = "invalid_state_transition"

    def __init__(self, entity: str, entity_id: Any, current: str, target: str):
        super().__init__(
            f"{entity} {entity_id}: cannot go from {current} to {target}",
            entity=entity,
            id=entity_id,
            current_status=current,
            target_status=target,
        )


class InsufficientStock(OchaError):
    kind = "insufficient_stock"
    http_status = 409

    def __init__(self, product_id: int, location_id: int, requested, available):
        super().__init__(
            f"Insufficient stock for product {product_id} at location {location_id} "
            f"(requested={requested}, available={available})",
            product_id=product_id,
            location_id=location_id,
            requested=str(requested),
            available=str(available),
        )


class Conflict(OchaError):
    kind = "conflict"
    http_status = 409


class TransientStoreError(OchaError):
    kind = "transient_store_error"
    http_status = 503
    retryable = True


class PartialFailure(OchaError):
    kind = "partial_failure"
    http_status = 207

    def __init__(self, message: str, failures: list[dict], **details: Any):
        super().__init__(message, failures=failures, **details)
        self.failures = failures
