"""
main.py - Prescription ledger gateway REST API.

Architecture position: between the prescription front-end and the ledger.
  doctor   -> POST /prescriptions/issue   -> ledger record + QR token + notify
  pharmacy -> POST /prescriptions/verify  -> ledger lookup
           -> POST /prescriptions/dispense -> second immutable record

Every ledger component is built once in create_app() and shared through
app.state; nothing ledger-related lives in module globals.

Role enforcement via X-Role header (see roles.py).
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .accounts import AccountInspector
from .config import Settings
from .connection import LedgerConnection
from .errors import LedgerError
from .hashing import utc_now_iso
from .index import InMemoryPrescriptionIndex, PostgresPrescriptionIndex, PrescriptionIndex
from .issuance import IssuanceWorkflow
from .metrics import MetricsCollector
from .notifications import LoggingNotificationDispatcher, NotificationDispatcher
from .record_store import RecordStore
from .roles import require_permission
from .schemas import (
    AccountInfoRequest, DispenseRequest, IssueRequest, KeyPairRequest, MetricsSummary,
    NetworkInfo, TokenOut, TokenRequest, TransactionVerifyRequest,
    VerifyRequest,
)
from .token import VerificationTokenBuilder
from .verifier import RecordVerifier

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("rxledger.gateway")

_STATUS_BY_KIND = {
    "ValidationError": 400,
    "InvalidIdentityFormat": 400,
    "NotFound": 404,
    "DuplicateSubmission": 409,
    "UnsupportedLookup": 501,
    "NetworkError": 502,
    "SubmissionFailed": 502,
    "OperatorNotConfigured": 503,
    "Timeout": 504,
}
_TRANSPORT_KINDS = {"NetworkError", "Timeout"}


@dataclass
class Gateway:
    settings: Settings
    connection: LedgerConnection
    index: PrescriptionIndex
    store: RecordStore
    verifier: RecordVerifier
    tokens: VerificationTokenBuilder
    accounts: AccountInspector
    issuance: IssuanceWorkflow
    metrics: MetricsCollector


def build_gateway(
    settings: Settings,
    connection: Optional[LedgerConnection] = None,
    index: Optional[PrescriptionIndex] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> Gateway:
    connection = connection or LedgerConnection(settings)
    if index is None:
        index = (PostgresPrescriptionIndex(settings.database_url) if settings.database_url
                 else InMemoryPrescriptionIndex())
    metrics = MetricsCollector()
    store = RecordStore(connection, index=index, metrics=metrics)
    tokens = VerificationTokenBuilder(settings.public_app_url)
    return Gateway(
        settings=settings,
        connection=connection,
        index=index,
        store=store,
        verifier=RecordVerifier(connection, index=index),
        tokens=tokens,
        accounts=AccountInspector(connection),
        issuance=IssuanceWorkflow(store, tokens, notifier or LoggingNotificationDispatcher()),
        metrics=metrics,
    )


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def _result_response(result, ok_status: int = 200) -> JSONResponse:
    status = ok_status if result.success else _STATUS_BY_KIND.get(result.error_kind, 500)
    return JSONResponse(status_code=status, content=result.model_dump(by_alias=True, exclude_none=True))


def _lookup_response(result) -> JSONResponse:
    # Not-found is a normal verification answer; only transport failures are errors.
    status = _STATUS_BY_KIND[result.error_kind] if result.error_kind in _TRANSPORT_KINDS else 200
    return JSONResponse(status_code=status, content=result.model_dump(by_alias=True, exclude_none=True))


def _error_response(exc: LedgerError) -> JSONResponse:
    return JSONResponse(status_code=_STATUS_BY_KIND.get(exc.kind, 500),
                        content={"error": exc.message, "errorKind": exc.kind})


router = APIRouter()


#  System endpoints

@router.get("/health", tags=["system"])
async def health(gw: Gateway = Depends(get_gateway)):
    return {
        "status": "ok",
        "backend": gw.settings.backend,
        "network": gw.connection.network_name,
        "operatorState": gw.connection.operator_state.value,
        "ts": utc_now_iso(),
    }


@router.get("/network-info", tags=["system"], response_model=NetworkInfo)
async def network_info(gw: Gateway = Depends(get_gateway)):
    """Network and operator presence flags. Never returns key material."""
    await gw.connection.get_handle()
    creds = gw.connection.current_credentials()
    return NetworkInfo(
        network=gw.connection.network_name,
        backend=gw.settings.backend,
        operator_id=creds.account_id or "Not set",
        has_operator_key=bool(creds.private_key),
        has_account_id=bool(creds.account_id),
        has_private_key=bool(creds.private_key),
        operator_state=gw.connection.operator_state.value,
    )


@router.post("/network/rebind", tags=["system"],
             dependencies=[Depends(require_permission("rebind_operator"))])
async def rebind_operator(gw: Gateway = Depends(get_gateway)):
    """Re-attempt the operator bind after credentials were added to the environment."""
    state = await gw.connection.rebind()
    return {"operatorState": state.value, "reason": gw.connection.operator_reason or None}


@router.get("/metrics", tags=["system"], response_model=MetricsSummary,
            dependencies=[Depends(require_permission("read_metrics"))])
async def metrics(gw: Gateway = Depends(get_gateway)):
    s = gw.metrics.summary()
    return MetricsSummary(
        started_at=s.started_at,
        total_submitted=s.total_submitted,
        total_success=s.total_success,
        total_failed=s.total_failed,
        avg_latency_ms=s.avg_latency_ms,
        p95_latency_ms=s.p95_latency_ms,
        p99_latency_ms=s.p99_latency_ms,
        failures_by_kind=s.failures_by_kind,
        by_record_type=s.by_record_type,
    )


#  Prescriptions

@router.post("/prescriptions/record", tags=["prescriptions"],
             dependencies=[Depends(require_permission("record_prescription"))])
async def record_prescription(body: dict[str, Any] = Body(...), gw: Gateway = Depends(get_gateway)):
    """Record a prescription as an immutable ledger entry and wait for consensus.

    The body is validated by the record store so that a bad payload comes back
    in the same result shape as a ledger failure.
    """
    log.info("recording prescription_id=%s", body.get("prescriptionId"))
    return _result_response(await gw.store.submit_record(body), ok_status=201)


@router.post("/prescriptions/issue", tags=["prescriptions"],
             dependencies=[Depends(require_permission("record_prescription"))])
async def issue_prescription(body: IssueRequest, gw: Gateway = Depends(get_gateway)):
    """Validate, record, build the QR token and notify the patient."""
    result = await gw.issuance.issue(body)
    status = 201 if result.record.success else _STATUS_BY_KIND.get(result.record.error_kind, 500)
    return JSONResponse(status_code=status, content=result.model_dump(by_alias=True, exclude_none=True))


@router.post("/prescriptions/verify", tags=["prescriptions"],
             dependencies=[Depends(require_permission("verify_prescription"))])
async def verify_prescription(body: VerifyRequest, gw: Gateway = Depends(get_gateway)):
    """Verify a prescription against the ledger by transaction hash, or by id via the index."""
    result = await gw.verifier.verify_prescription(body.prescription_id, body.transaction_hash)
    log.info("verify prescription_id=%s tx=%s verified=%s",
             body.prescription_id, body.transaction_hash, result.verified)
    return _lookup_response(result)


@router.post("/prescriptions/dispense", tags=["prescriptions"],
             dependencies=[Depends(require_permission("dispense_prescription"))])
async def dispense_prescription(body: DispenseRequest, gw: Gateway = Depends(get_gateway)):
    """Record a dispensation event as a second immutable ledger entry."""
    result = await gw.store.mark_dispensed(body.prescription_id, body.pharmacy_data)
    return _result_response(result)


@router.post("/prescriptions/token", tags=["prescriptions"], response_model=TokenOut,
             dependencies=[Depends(require_permission("build_token"))])
async def build_token(body: TokenRequest, gw: Gateway = Depends(get_gateway)):
    try:
        rendered = gw.tokens.build(body.transaction_id, body.prescription_id)
    except LedgerError as exc:
        return _error_response(exc)
    return TokenOut(token=rendered.token, payload=rendered.payload, qr_code=rendered.data_url)


@router.post("/transactions/verify", tags=["transactions"],
             dependencies=[Depends(require_permission("verify_transaction"))])
async def verify_transaction(body: TransactionVerifyRequest, gw: Gateway = Depends(get_gateway)):
    """Raw ledger lookup; the status is reported as the ledger gave it."""
    return _lookup_response(await gw.verifier.verify_by_transaction_id(body.transaction_id))


#  Accounts

@router.post("/accounts/info", tags=["accounts"],
             dependencies=[Depends(require_permission("read_accounts"))])
async def account_info(body: AccountInfoRequest, gw: Gateway = Depends(get_gateway)):
    try:
        info = await gw.accounts.get_account_info(body.account_id)
    except LedgerError as exc:
        return _error_response(exc)
    return info.model_dump(by_alias=True, exclude_none=True)


@router.post("/accounts/keypair", tags=["accounts"],
             dependencies=[Depends(require_permission("generate_keys"))])
async def generate_keypair(body: KeyPairRequest, gw: Gateway = Depends(get_gateway)):
    return gw.accounts.generate_key_pair(body.algorithm).model_dump(by_alias=True)


#  App factory

def create_app(settings: Optional[Settings] = None, **overrides) -> FastAPI:
    settings = settings or Settings.from_env()
    gateway = build_gateway(settings, **overrides)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(gateway.index, PostgresPrescriptionIndex):
            for attempt in range(15):
                try:
                    await gateway.index.init()
                    break
                except (OSError, asyncio.TimeoutError) as exc:
                    log.warning("prescription index not ready (attempt %d): %s", attempt + 1, exc)
                    await asyncio.sleep(2)
            else:
                raise RuntimeError("prescription index database unavailable")
        await gateway.connection.get_handle()
        yield
        await gateway.index.close()

    app = FastAPI(
        title="Prescription Ledger Gateway",
        description=(
            "Records prescriptions and dispensations as immutable ledger entries, "
            "verifies them, and issues scannable verification tokens.\n\n"
            "**Roles** (X-Role header): `doctor` | `pharmacist` | `patient` | `admin`"
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.gateway = gateway
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    import uvicorn
    uvicorn.run("rxledger.main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
