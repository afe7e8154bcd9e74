"""
Trip API Endpoints.

Drivers start trips, stream locations, record check-ins and end trips.
Drivers (and their school admins) read active trips and history.
Push delivery for the notifications a request committed runs after the
response is sent.
"""

from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Body, Depends, Path, Query, status

from schoolbus.app.core.config import settings
from schoolbus.app.core.dependencies import get_current_user
from schoolbus.app.db.document_store import DocumentStore
from schoolbus.app.db.session import get_db
from schoolbus.app.domain.trips.trip_state_machine import TripStateMachine
from schoolbus.app.schemas.auth import CallerIdentity
from schoolbus.app.schemas.trip import TripListResponse
from schoolbus.app.schemas.trip_execution import (
    CheckInRequest,
    CheckInResponse,
    LocationUpdate,
    LocationUpdateResponse,
    TripEndResponse,
    TripStartRequest,
    TripStartResponse,
)
from schoolbus.app.services.push_delivery import PushDispatcher, get_push_dispatcher

router = APIRouter(prefix="/driver", tags=["Driver - Trip Execution"])
visibility_router = APIRouter(prefix="/drivers", tags=["Trip Visibility"])


async def get_document_store(db=Depends(get_db)) -> DocumentStore:
    """Store handle over the request's session."""
    return DocumentStore(db)


async def get_trip_state_machine(
    store: DocumentStore = Depends(get_document_store),
    caller: CallerIdentity = Depends(get_current_user),
) -> TripStateMachine:
    return TripStateMachine(store, caller)


def schedule_push(background_tasks: BackgroundTasks, dispatcher: PushDispatcher, machine: TripStateMachine) -> None:
    if machine.outbox:
        background_tasks.add_task(dispatcher.deliver, list(machine.outbox))


@router.post("/trips", response_model=TripStartResponse, status_code=status.HTTP_201_CREATED)
async def start_trip(
    background_tasks: BackgroundTasks,
    request: TripStartRequest = Body(...),
    machine: TripStateMachine = Depends(get_trip_state_machine),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
):
    """
    Start a trip (assigned driver only).

    Notifies every parent of every child on the route.
    """
    response = await machine.start_trip(
        bus_id=request.bus_id,
        route_id=request.route_id,
        driver_id=request.driver_id,
        trip_type=request.type,
    )
    schedule_push(background_tasks, dispatcher, machine)
    return response


@router.post("/trips/{trip_id}/location", response_model=LocationUpdateResponse)
async def update_trip_location(
    trip_id: str = Path(..., description="Trip ID"),
    location: LocationUpdate = Body(...),
    machine: TripStateMachine = Depends(get_trip_state_machine),
):
    """Record the bus's latest position (assigned driver only)."""
    return await machine.update_trip_location(trip_id, location.latitude, location.longitude)


@router.post("/trips/{trip_id}/check-ins", response_model=CheckInResponse, status_code=status.HTTP_201_CREATED)
async def complete_check_in(
    background_tasks: BackgroundTasks,
    trip_id: str = Path(..., description="Trip ID"),
    request: CheckInRequest = Body(...),
    machine: TripStateMachine = Depends(get_trip_state_machine),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
):
    """
    Record a child boarding or alighting (assigned driver only).

    A second check-in for the same child on the same trip returns 409.
    """
    response = await machine.complete_check_in(
        trip_id=trip_id,
        child_id=request.child_id,
        stop_id=request.stop_id,
        method=request.method,
        photo_url=request.photo_url,
    )
    schedule_push(background_tasks, dispatcher, machine)
    return response


@router.post("/trips/{trip_id}/end", response_model=TripEndResponse)
async def end_trip(
    background_tasks: BackgroundTasks,
    trip_id: str = Path(..., description="Trip ID"),
    machine: TripStateMachine = Depends(get_trip_state_machine),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
):
    """End a trip and alert the parents of missed children (assigned driver only)."""
    response = await machine.end_trip(trip_id)
    schedule_push(background_tasks, dispatcher, machine)
    return response


@visibility_router.get("/{driver_id}/trips/active", response_model=TripListResponse)
async def get_active_trips(
    driver_id: str = Path(..., description="Driver ID"),
    machine: TripStateMachine = Depends(get_trip_state_machine),
):
    """Active trips of a driver (self, school admin of the driver's school, or super admin)."""
    return await machine.get_active_trips(driver_id)


@visibility_router.get("/{driver_id}/trips/history", response_model=TripListResponse)
async def get_trip_history(
    driver_id: str = Path(..., description="Driver ID"),
    limit: int = Query(settings.trip_history_default_limit, ge=1, le=settings.trip_history_max_limit),
    cursor: Optional[str] = Query(None, description="Last trip ID of the previous page"),
    machine: TripStateMachine = Depends(get_trip_state_machine),
):
    """Trips of a driver, newest first, paginated by cursor."""
    return await machine.get_trip_history(driver_id, limit=limit, cursor=cursor)
