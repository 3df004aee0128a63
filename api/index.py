from contextlib import asynccontextmanager, nullcontext
from functools import lru_cache
from uuid import UUID, uuid4

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum
from pydantic import BaseModel, Field

from common.config import get_settings
from common.logging import configure_logging, log_context
from ledger.errors import AccountStatusError, EntryNotFoundError, LedgerError, StateError, ValidationError
from ledger.models import AccountBalance, LedgerEntry, LedgerHistoryResponse
from workflows import ActorEvent, Engine, EventKind, InMemoryMessenger, build_engine


class EventRequest(BaseModel):
    actor_id: int
    kind: EventKind = EventKind.TEXT
    payload: str = ""
    first_name: str = ""
    last_name: str = ""
    username: str = ""


class ApprovalRequest(BaseModel):
    approver_id: int


class DispatchResponse(BaseModel):
    reply: dict
    outbox: list[dict] = Field(default_factory=list)


class ApprovalResponse(BaseModel):
    entry: LedgerEntry
    outbox: list[dict] = Field(default_factory=list)


class ReapResponse(BaseModel):
    evicted: int


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return build_engine(get_settings())


def request_outbox(engine: Engine):
    """Messages produced while handling the current request, and only those."""
    if isinstance(engine.messenger, InMemoryMessenger):
        return engine.messenger.capture()
    return nullcontext([])


def raise_http(error: LedgerError) -> None:
    if isinstance(error, EntryNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, StateError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, AccountStatusError):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=code, detail=error.reply_text)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    engine = get_engine()
    engine.reaper.start()
    try:
        yield
    finally:
        engine.reaper.shutdown()


app = FastAPI(
    title="kWh Ledger API",
    description="Per-actor workflows over a kWh balance ledger",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or uuid4().hex[:12]
    with log_context(correlation_id=correlation_id):
        response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "kwh-ledger"}


@app.post("/events", response_model=DispatchResponse)
def dispatch_event(request: EventRequest, engine: Engine = Depends(get_engine)):
    event = ActorEvent(**request.model_dump())
    with request_outbox(engine) as outbox:
        reply = engine.dispatcher.dispatch(event)
    return DispatchResponse(reply=reply.to_dict(), outbox=[message.to_dict() for message in outbox])


@app.post("/maintenance/reap", response_model=ReapResponse)
def reap_idle_slots(engine: Engine = Depends(get_engine)):
    return ReapResponse(evicted=engine.reaper.reap_idle_slots())


@app.get("/accounts/{account_id}", response_model=AccountBalance)
def get_account_balance(account_id: UUID, engine: Engine = Depends(get_engine)):
    try:
        return engine.ledger.get_balance(account_id)
    except StateError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Account {account_id} not found")


@app.get("/accounts/{account_id}/ledger", response_model=LedgerHistoryResponse)
def get_account_ledger(
    account_id: UUID,
    limit: int = 50,
    offset: int = 0,
    engine: Engine = Depends(get_engine),
):
    try:
        return engine.ledger.get_ledger_history(account_id, limit, offset)
    except StateError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Account {account_id} not found")


@app.post("/entries/{entry_id}/approve", response_model=ApprovalResponse)
def approve_entry(entry_id: UUID, request: ApprovalRequest, engine: Engine = Depends(get_engine)):
    try:
        engine.directory.require_admin(request.approver_id)
        with request_outbox(engine) as outbox:
            entry = engine.approvals.approve(entry_id, request.approver_id)
        return ApprovalResponse(entry=entry, outbox=[message.to_dict() for message in outbox])
    except LedgerError as e:
        raise_http(e)


@app.post("/entries/{entry_id}/reject", response_model=ApprovalResponse)
def reject_entry(entry_id: UUID, request: ApprovalRequest, engine: Engine = Depends(get_engine)):
    try:
        engine.directory.require_admin(request.approver_id)
        with request_outbox(engine) as outbox:
            entry = engine.approvals.reject(entry_id, request.approver_id)
        return ApprovalResponse(entry=entry, outbox=[message.to_dict() for message in outbox])
    except LedgerError as e:
        raise_http(e)


handler = Mangum(app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.index:app", host="0.0.0.0", port=8000)
