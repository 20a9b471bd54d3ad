"""Stock records: registration and restocking."""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.inventory.stock import InventoryItem, stock_key
from settlement.shared.errors import ErrorKind, LifecycleError, Result, execute
from settlement.shared.locks import stock_locks


@settlement.command(part_of="InventoryItem")
class RegisterStock:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=0)
    low_stock_threshold = Integer(default=5, min_value=0)


@settlement.command(part_of="InventoryItem")
class Restock:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True)
    reference = String(max_length=255)


@settlement.command_handler(part_of=InventoryItem)
class StockManagementHandler:
    @handle(RegisterStock)
    def register_stock(self, command):
        repo = current_domain.repository_for(InventoryItem)
        key = stock_key(command.product_id, command.variant_id)
        try:
            repo.get(key)
        except ObjectNotFoundError:
            pass
        else:
            raise LifecycleError(ErrorKind.INVALID_INPUT, f"Stock for {key} is already registered", "product_id")

        item = InventoryItem.register(
            product_id=command.product_id,
            quantity=command.quantity,
            variant_id=command.variant_id,
            low_stock_threshold=command.low_stock_threshold,
        )
        repo.add(item)
        return str(item.id)

    @handle(Restock)
    def restock(self, command):
        repo = current_domain.repository_for(InventoryItem)
        item = repo.get(stock_key(command.product_id, command.variant_id))
        item.restock(command.quantity, reference=command.reference)
        repo.add(item)
        return item.on_hand


def register_stock(product_id, quantity: int, variant_id=None, low_stock_threshold: int = 5) -> Result:
    with stock_locks.hold(stock_key(product_id, variant_id)):
        return execute(
            RegisterStock,
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            low_stock_threshold=low_stock_threshold,
        )


def restock(product_id, quantity: int, variant_id=None, reference: str | None = None) -> Result:
    with stock_locks.hold(stock_key(product_id, variant_id)):
        return execute(Restock, product_id=product_id, variant_id=variant_id, quantity=quantity, reference=reference)
