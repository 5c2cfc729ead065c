"""Allocation expiry — command and handler for the periodic sweep.

Designed to be triggered by an external scheduler (cron, K8s CronJob) via
the maintenance API endpoint. This sweep is the only path that reclaims
reservations nobody started picking; expired allocations are also withdrawn
from the open pick lists that carried them.
"""

import structlog
from protean import handle
from protean.fields import DateTime

from warehouse.domain import warehouse
from warehouse.order.order import FulfillmentOrder
from warehouse.utils.time import utcnow

logger = structlog.get_logger(__name__)


@warehouse.command(part_of="FulfillmentOrder")
class ExpireAllocations:
    """Release reserved allocations whose expiry has passed."""

    as_of = DateTime()  # Optional: defaults to now


@warehouse.command_handler(part_of=FulfillmentOrder)
class ExpireAllocationsHandler:
    @handle(ExpireAllocations)
    def expire_allocations(self, command):
        from warehouse.services import get_services

        as_of = command.as_of or utcnow()
        logger.info("Running allocation expiry sweep", as_of=as_of.isoformat())
        expired = get_services().engine.expire(as_of)
        return len(expired)
