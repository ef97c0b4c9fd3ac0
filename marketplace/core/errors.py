class MarketplaceError(Exception):
    """Base class for errors scoped to a single operation."""


class OrderNotFoundError(MarketplaceError):
    def __init__(self, order_id: str):
        super().__init__(f"Pedido no encontrado: {order_id}")
        self.order_id = order_id


class InvalidTransitionError(MarketplaceError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"No se puede pasar de '{current}' a '{requested}'")
        self.current = current
        self.requested = requested


class RepositoryError(MarketplaceError):
    """The backend of record rejected or failed a read/write."""
