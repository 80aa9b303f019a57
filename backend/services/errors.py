"""
Taxonomie des erreurs du moteur.

Les services lèvent ces exceptions ; la couche HTTP les traduit
(voir backend.app.main). Aucune n'est rattrapée dans les services :
le unit of work (backend.services.uow) rollback puis propage.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base de toutes les erreurs métier."""


class NotFoundError(EngineError):
    def __init__(self, entity: str, entity_id) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(EngineError):
    pass


class ConsistencyError(EngineError):
    pass


class InsufficientInventoryError(ConsistencyError):
    def __init__(self, sales_order_item_id: int, missing) -> None:
        super().__init__(f"Not enough inventory for sales order item {sales_order_item_id} (missing={missing})")
        self.sales_order_item_id = sales_order_item_id
        self.missing = missing


class OverInvoiceError(ConsistencyError):
    pass


class FulfilmentItemConsumedError(ConsistencyError):
    pass


class MissingPaymentTermError(ConsistencyError):
    pass


class EmptyFulfilmentError(ConsistencyError):
    pass


class TransactionConflictError(EngineError):
    """Conflit de sérialisation : l'appelant peut rejouer l'opération."""

    retryable = True
