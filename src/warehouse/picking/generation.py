"""Pick list generation — command and handler."""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, String, Text
from protean.utils.globals import current_domain

from warehouse.domain import warehouse
from warehouse.picking.candidates import candidates_for_allocations, candidates_for_orders
from warehouse.picking.pick_list import PickList

logger = structlog.get_logger(__name__)


@warehouse.command(part_of="PickList")
class GeneratePickLists:
    """Generate pick lists from orders or from explicit allocations.

    In batch mode orders are clustered by bin overlap and one list is
    generated per cluster; otherwise everything goes onto a single list.
    """

    order_ids = Text()  # JSON list
    allocation_ids = Text()  # JSON list
    list_name = String(max_length=200)
    batch = Boolean(default=False)


@warehouse.command_handler(part_of=PickList)
class PickListGenerationHandler:
    @handle(GeneratePickLists)
    def generate(self, command):
        from warehouse.services import get_services

        services = get_services()
        order_ids = json.loads(command.order_ids) if command.order_ids else []
        allocation_ids = json.loads(command.allocation_ids) if command.allocation_ids else []
        if bool(order_ids) == bool(allocation_ids):
            raise ValidationError({"pick_list": ["Provide either order_ids or allocation_ids"]})

        if order_ids:
            candidates = candidates_for_orders(order_ids, services.ledger)
        else:
            candidates = candidates_for_allocations(allocation_ids, services.ledger)

        if command.batch:
            pick_lists = services.generator.generate_batches(candidates, name_prefix=command.list_name)
        else:
            pick_lists = [services.generator.generate(candidates, list_name=command.list_name)]
        if not pick_lists:
            raise ValidationError({"pick_list": ["No pickable allocations"]})

        repo = current_domain.repository_for(PickList)
        for pick_list in pick_lists:
            repo.add(pick_list)
            logger.info(
                "Pick list generated",
                pick_list_id=str(pick_list.id),
                items=pick_list.total_items,
                zones=pick_list.zone_count,
                estimated_seconds=pick_list.estimated_time_seconds,
                batch=pick_list.is_batch,
            )
        return [str(p.id) for p in pick_lists]
