from typing import Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from app.api.auth import require_api_key
from app.api.schemas import AttemptSnapshot, BridgePrefs, SolutionIn, StatusNotificationIn
from app.core.state_machine import ProtocolStateMachine
from app.moat.network import RedisNetworkControl
from app.moat.sink import MemorySink
from app.observability.logging import log
from app.store.prefs import PreferenceStore

router = APIRouter(dependencies=[Depends(require_api_key)])

Attempt = Tuple[ProtocolStateMachine, MemorySink]


def build_attempt() -> Attempt:
    sink = MemorySink()
    prefs = PreferenceStore()
    machine = ProtocolStateMachine(RedisNetworkControl(), sink, prefs)
    return machine, sink


def get_prefs() -> PreferenceStore:
    return PreferenceStore()


def _current(request: Request) -> Attempt:
    """The one live attempt for this process; built on first use."""
    attempt = getattr(request.app.state, "moat_attempt", None)
    if attempt is None:
        attempt = request.app.state.attempt_factory()
        request.app.state.moat_attempt = attempt
    return attempt


def _snapshot(machine: ProtocolStateMachine) -> AttemptSnapshot:
    return AttemptSnapshot(**machine.snapshot())


@router.post("/network/status", response_model=AttemptSnapshot)
async def network_status(note: StatusNotificationIn, request: Request):
    machine, _ = _current(request)
    await run_in_threadpool(machine.on_status_changed, note.status, note.proxyHost, note.proxyPort)
    return _snapshot(machine)


@router.post("/moat/attempts", response_model=AttemptSnapshot)
async def new_attempt(request: Request):
    old = getattr(request.app.state, "moat_attempt", None)
    if old is not None:
        old[0].detach()
    attempt = request.app.state.attempt_factory()
    request.app.state.moat_attempt = attempt
    log(event="moat_attempt_created")
    await run_in_threadpool(attempt[0].start)
    return _snapshot(attempt[0])


@router.get("/moat/state", response_model=AttemptSnapshot)
def moat_state(request: Request):
    machine, _ = _current(request)
    return _snapshot(machine)


@router.get("/moat/captcha")
def moat_captcha(request: Request):
    machine, sink = _current(request)
    if not machine.snapshot()["hasChallenge"] or not sink.image:
        raise HTTPException(status_code=404, detail="No captcha available")
    # BridgeDB serves JPEG captchas
    return Response(content=sink.image, media_type="image/jpeg")


@router.post("/moat/solution", response_model=AttemptSnapshot)
async def moat_solution(body: SolutionIn, request: Request):
    machine, _ = _current(request)
    await run_in_threadpool(machine.submit_solution, body.solution)
    return _snapshot(machine)


@router.post("/moat/refresh", response_model=AttemptSnapshot)
async def moat_refresh(request: Request):
    machine, _ = _current(request)
    await run_in_threadpool(machine.refresh)
    return _snapshot(machine)


@router.post("/moat/reset", response_model=AttemptSnapshot)
async def moat_reset(request: Request):
    machine, _ = _current(request)
    await run_in_threadpool(machine.reset)
    return _snapshot(machine)


@router.get("/prefs/bridges", response_model=BridgePrefs)
def bridge_prefs(prefs: PreferenceStore = Depends(get_prefs)):
    raw = prefs.get_bridges_list()
    return BridgePrefs(
        bridges=[line for line in raw.splitlines() if line.strip()],
        enabled=prefs.bridges_enabled(),
    )
