"""
Engine confirmation handling

order_processed
    SUCCESS: the order is resting in the book; stamp it submitted.
    FAILURE: the engine refused the order; cancel it and release its funds.

cancel_processed
    SUCCESS: release funds if the order is still active (confirmed mode, or
             an engine-initiated cancel); no-op if already canceled.
    FAILURE: in optimistic mode an order we already canceled is still live
             in the engine -> CancelRaceError. In confirmed mode the order
             simply stays active.
"""
from loguru import logger

from ..engine import CancelProcessedMessage, OrderProcessedMessage, ProcessingStatus
from ..errors import CancelRaceError, MalformedEvent
from ..models import OrderStatus
from ..orders import OrderStore
from ..store import ILedgerStore
from .cancellation import CancellationIssuer, OPTIMISTIC


class EngineConfirmationHandler:
    """Apply engine acknowledgements to orders"""

    def __init__(
        self,
        store: ILedgerStore,
        order_store: OrderStore,
        cancellation_issuer: CancellationIssuer
    ):
        self.store = store
        self.order_store = order_store
        self.cancellation_issuer = cancellation_issuer

    async def on_order_processed(self, message: OrderProcessedMessage) -> None:
        """Handle the engine's response to NewOrder"""
        released = None

        async with self.store.transaction() as tx:
            order = await tx.get_order(message.order_id)
            if order is None:
                raise MalformedEvent(f"Confirmation for unknown order {message.order_id}")

            if message.status == ProcessingStatus.SUCCESS:
                if order.engine_submitted_at is None:
                    await self.order_store.mark_submitted(tx, order.id)
                logger.debug(f"Engine accepted order {order.id}")
                return

            if not order.is_active:
                logger.info(f"Engine rejected order {order.id}, already {order.status.value}")
                return

            released = await self.cancellation_issuer.cancel_in_transaction(
                tx, order.id, reason="rejected_by_engine"
            )

        order, asset, amount = released
        logger.warning(
            f"Engine rejected order {order.id} ({message.reason or 'no reason'}): "
            f"released {amount} {asset}"
        )
        await self.cancellation_issuer.publish_canceled(order, asset, amount)

    async def on_cancel_processed(self, message: CancelProcessedMessage) -> None:
        """Handle the engine's response to CancelOrder"""
        released = None

        async with self.store.transaction() as tx:
            order = await tx.get_order(message.order_id)
            if order is None:
                raise MalformedEvent(f"Cancel confirmation for unknown order {message.order_id}")

            if message.status == ProcessingStatus.FAILURE:
                if self.cancellation_issuer.mode == OPTIMISTIC and order.status == OrderStatus.CANCELED:
                    raise CancelRaceError(
                        f"Engine refused to cancel order {order.id} already canceled by the ledger",
                        order_id=order.id,
                        reason=message.reason or "",
                    )
                logger.info(f"Engine declined cancel of order {order.id}: {message.reason or 'no reason'}")
                return

            if not order.is_active:
                logger.debug(f"Cancel confirmed for order {order.id} ({order.status.value})")
                return

            # Confirmed mode: this is the user's cancel landing; otherwise the engine canceled on its own
            reason = "engine" if self.cancellation_issuer.mode == OPTIMISTIC else "user"
            released = await self.cancellation_issuer.cancel_in_transaction(
                tx, order.id, reason=reason
            )

        order, asset, amount = released
        logger.info(f"Engine canceled order {order.id}: released {amount} {asset}")
        await self.cancellation_issuer.publish_canceled(order, asset, amount)
