"""Order state machine with forward-only transition validation.

Orders move along a single fulfilment path. Payment events may skip ahead
(cash collected on delivery jumps straight to ``delivered``) but never move
an order backwards, and cancellation is only possible before fulfilment
starts.
"""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.logging import get_logger
from zambezi.database.models import Order, OrderStatus, OrderStatusHistory

logger = get_logger(__name__)

FORWARD_PATH: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


def _rank(status: OrderStatus) -> int:
    return FORWARD_PATH.index(status)


class OrderStateMachine:
    """State machine for order status changes.

    Changes are staged on the session and written to the status history;
    committing is left to the caller so that order updates share the
    transaction of the payment write that caused them.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def can_transition(self, order: Order, target_status: OrderStatus) -> bool:
        current = order.status
        if current == target_status:
            return False
        if target_status == OrderStatus.CANCELLED:
            return current.is_cancellable
        if current == OrderStatus.CANCELLED:
            return False
        return _rank(target_status) > _rank(current)

    def validate_transition(self, order: Order, target_status: OrderStatus) -> None:
        """Raise StateTransitionError unless ``order`` may move to ``target_status``."""
        if self.can_transition(order, target_status):
            return

        if target_status == OrderStatus.CANCELLED:
            message = f"Order cannot be cancelled from status {order.status.value}"
        else:
            message = (
                f"Invalid order transition from {order.status.value} "
                f"to {target_status.value}"
            )
        raise StateTransitionError(
            message,
            current_state=order.status,
            target_state=target_status,
            order_id=order.id,
        )

    def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        reason: Optional[str] = None,
    ) -> None:
        """
        Move ``order`` to ``target_status`` and record the change.

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        self.validate_transition(order, target_status)

        old_status = order.status
        order.status = target_status
        self.session.add(
            OrderStatusHistory(
                order_id=order.id,
                from_status=old_status,
                to_status=target_status,
                reason=reason,
            )
        )

        logger.info(
            "Order status changed",
            order_id=order.id,
            order_number=order.order_number,
            transition=f"{old_status.value}->{target_status.value}",
            reason=reason,
        )

    def advance(
        self,
        order: Order,
        target_status: OrderStatus,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Move an order forward if it is not already at or past ``target_status``.

        Late or duplicate payment events call this; a move that would go
        backwards is skipped and logged rather than raised.

        Returns:
            True if the status changed
        """
        if not self.can_transition(order, target_status):
            logger.warning(
                "Skipped non-forward order transition",
                order_id=order.id,
                current_status=order.status.value,
                target_status=target_status.value,
                reason=reason,
            )
            return False

        self.apply_transition(order, target_status, reason=reason)
        return True

    def allowed_transitions(self, order: Order) -> set[OrderStatus]:
        return {status for status in OrderStatus if self.can_transition(order, status)}
