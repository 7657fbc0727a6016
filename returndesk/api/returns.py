"""Returns & refunds API routes."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from returndesk.config import get_settings
from returndesk.schemas import (
    ApproveBody,
    CompleteBody,
    RejectBody,
    ReturnCreate,
    ReturnOut,
    SchedulePickupBody,
    SlotsOut,
    StartProcessingBody,
    StatsOut,
    TrackingOut,
)
from returndesk.services.auth import get_actor
from returndesk.services.return_queries import ReturnQueries
from returndesk.services.returns import (
    OrderSnapshot,
    PickupRequest,
    ReturnAction,
    ReturnFilter,
    ReturnRequest,
    ReturnSeed,
    ReturnStatus,
    TransitionPayload,
)
from returndesk.services.workflow import ReturnWorkflow, build_workflow

router = APIRouter(prefix="/returns", tags=["returns"])

_workflow: Optional[ReturnWorkflow] = None


def get_workflow() -> ReturnWorkflow:
    global _workflow
    if _workflow is None:
        _workflow = build_workflow(get_settings())
    return _workflow


def get_queries(workflow: ReturnWorkflow = Depends(get_workflow)) -> ReturnQueries:
    return ReturnQueries(workflow.store)


def _out(record: ReturnRequest) -> ReturnOut:
    return ReturnOut.model_validate(record)


# --- Collection ---

@router.post("/", status_code=201, response_model=ReturnOut)
async def create_return(
    body: ReturnCreate,
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    seed = ReturnSeed(
        order_id=body.order_id,
        product_id=body.product_id,
        product_title=body.product_title,
        quantity=body.quantity,
        unit_price=body.unit_price,
        total_price=body.total_price,
        reason=body.reason,
        requested_by=body.requested_by or actor,
        order_item_id=body.order_item_id,
        customer_notes=body.customer_notes,
    )
    order = None
    if body.order is not None:
        order = OrderSnapshot(
            order_id=body.order_id,
            status=body.order.status,
            ordered_at=body.order.ordered_at,
            product_type=body.order.product_type,
        )
    return _out(await workflow.create_return(seed, order))


@router.get("/", response_model=list[ReturnOut])
async def list_returns(
    status: Optional[ReturnStatus] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    requested_by: Optional[str] = None,
    include_archived: bool = False,
    sort_by: str = "requested_at",
    descending: bool = True,
    actor: str = Depends(get_actor),
    queries: ReturnQueries = Depends(get_queries),
):
    flt = ReturnFilter(
        status=status,
        search=search,
        date_from=date_from,
        date_to=date_to,
        requested_by=requested_by,
        include_archived=include_archived,
        sort_by=sort_by,
        descending=descending,
    )
    return [_out(r) for r in await queries.list(flt)]


@router.get("/stats", response_model=StatsOut)
async def return_stats(
    actor: str = Depends(get_actor),
    queries: ReturnQueries = Depends(get_queries),
):
    return await queries.stats()


@router.get("/pickup-slots", response_model=SlotsOut)
async def pickup_slots(
    pincode: str = Query(...),
    pickup_date: date = Query(..., alias="date"),
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    slots = await workflow.list_available_slots(pincode, pickup_date)
    return SlotsOut(pincode=pincode, pickup_date=pickup_date, slots=slots)


# --- Single return ---

@router.get("/{return_id}", response_model=ReturnOut)
async def get_return(
    return_id: str,
    actor: str = Depends(get_actor),
    queries: ReturnQueries = Depends(get_queries),
):
    return _out(await queries.get(return_id))


@router.post("/{return_id}/approve", response_model=ReturnOut)
async def approve_return(
    return_id: str,
    body: ApproveBody,
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    record = await workflow.approve(
        return_id, body.admin_notes, body.refund_amount, body.refund_method, actor=actor,
    )
    return _out(record)


@router.post("/{return_id}/reject", response_model=ReturnOut)
async def reject_return(
    return_id: str,
    body: RejectBody,
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    payload = TransitionPayload(
        admin_notes=body.admin_notes,
        refund_amount=body.refund_amount,
        refund_method=body.refund_method,
    )
    return _out(await workflow.execute(return_id, ReturnAction.REJECT, payload, actor=actor))


@router.post("/{return_id}/schedule-pickup", response_model=ReturnOut)
async def schedule_pickup(
    return_id: str,
    body: SchedulePickupBody,
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    pickup = PickupRequest(
        customer_name=body.customer_name,
        phone=body.phone,
        address=body.address,
        city=body.city,
        state=body.state,
        pincode=body.pincode,
        pickup_date=body.pickup_date,
        time_slot=body.time_slot,
        special_instructions=body.special_instructions,
    )
    record = await workflow.schedule_pickup(return_id, pickup, body.admin_notes, actor=actor)
    return _out(record)


@router.post("/{return_id}/start-processing", response_model=ReturnOut)
async def start_processing(
    return_id: str,
    body: StartProcessingBody,
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    record = await workflow.start_processing(
        return_id, body.admin_notes, body.refund_amount, body.refund_method, actor=actor,
    )
    return _out(record)


@router.post("/{return_id}/complete", response_model=ReturnOut)
async def complete_return(
    return_id: str,
    body: CompleteBody,
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    record = await workflow.complete(
        return_id, body.refund_amount, body.refund_method, body.admin_notes, actor=actor,
    )
    return _out(record)


@router.post("/{return_id}/archive", response_model=ReturnOut)
async def archive_return(
    return_id: str,
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    return _out(await workflow.archive(return_id, actor=actor))


@router.get("/{return_id}/pickup-tracking", response_model=TrackingOut)
async def pickup_tracking(
    return_id: str,
    actor: str = Depends(get_actor),
    workflow: ReturnWorkflow = Depends(get_workflow),
):
    return TrackingOut.model_validate(await workflow.track_pickup(return_id))
