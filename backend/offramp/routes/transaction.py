"""
Transaction Routes — Deposit → payout pipeline.
Handles: creation, status, deposit reports, payout initiation, cancellation.
"""
from fastapi import APIRouter, BackgroundTasks, Depends

from offramp.dependencies import (
    get_current_partner, get_transaction_service, get_storage_factory, get_webhook_client,
)
from offramp.models import Partner
from offramp.scheduler import deliver_due_webhooks
from offramp.schemas.schemas import (
    Envelope, TransactionCreateRequest, TransactionCreateResponse, TransactionResponse,
    DepositRequest, PayoutRequest, PayoutResponse, CancelRequest,
)
from offramp.services.fee_calculator import format_money
from offramp.services.transaction_service import TransactionService

router = APIRouter(prefix="/api/v1", tags=["Transactions"])


def _view(txn, transactions: TransactionService) -> TransactionResponse:
    return TransactionResponse.from_model(txn, transactions.storage.get_quote(txn.quote_id))


@router.post("/transaction/create", response_model=Envelope[TransactionCreateResponse])
def create_transaction(
    payload: TransactionCreateRequest,
    partner: Partner = Depends(get_current_partner),
    transactions: TransactionService = Depends(get_transaction_service),
):
    """Open a transaction against an active quote once KYC is complete."""
    txn = transactions.create_transaction(
        partner, payload.session_id, payload.quote_id, payload.kyc_session_id,
        payload.asset, payload.network,
    )
    return Envelope(data=TransactionCreateResponse(
        transaction_id=txn.id,
        status=txn.status,
        asset=txn.asset,
        network=txn.network,
        deposit_address=txn.deposit_address,
        expected_amount=format_money(txn.expected_amount),
        expires_at=txn.expires_at,
    ))


@router.get("/transaction/{transaction_id}", response_model=Envelope[TransactionResponse])
def get_transaction(
    transaction_id: str,
    partner: Partner = Depends(get_current_partner),
    transactions: TransactionService = Depends(get_transaction_service),
):
    txn = transactions.get_transaction(transaction_id, partner)
    return Envelope(data=_view(txn, transactions))


@router.post("/transaction/{transaction_id}/cancel", response_model=Envelope[TransactionResponse])
def cancel_transaction(
    transaction_id: str,
    payload: CancelRequest | None = None,
    partner: Partner = Depends(get_current_partner),
    transactions: TransactionService = Depends(get_transaction_service),
):
    txn = transactions.cancel_transaction(transaction_id, payload.reason if payload else None, partner)
    return Envelope(data=_view(txn, transactions))


@router.post("/simulate/deposit", response_model=Envelope[TransactionResponse])
def report_deposit(
    payload: DepositRequest,
    background_tasks: BackgroundTasks,
    partner: Partner = Depends(get_current_partner),
    transactions: TransactionService = Depends(get_transaction_service),
    storage_factory=Depends(get_storage_factory),
    webhook_client=Depends(get_webhook_client),
):
    """Report an on-chain deposit; fires `deposit.detected`."""
    txn = transactions.record_deposit(payload.transaction_id, payload.amount, payload.tx_hash, partner)
    background_tasks.add_task(deliver_due_webhooks, storage_factory, webhook_client)
    return Envelope(data=_view(txn, transactions))


@router.post("/payout/initiate", response_model=Envelope[PayoutResponse], tags=["Payouts"])
def initiate_payout(
    payload: PayoutRequest,
    background_tasks: BackgroundTasks,
    partner: Partner = Depends(get_current_partner),
    transactions: TransactionService = Depends(get_transaction_service),
    storage_factory=Depends(get_storage_factory),
    webhook_client=Depends(get_webhook_client),
):
    """Settle INR for a confirmed deposit; fires `payout.settled`."""
    txn = transactions.initiate_payout(
        payload.transaction_id, payload.channel, payload.destination, payload.amount, partner,
    )
    background_tasks.add_task(deliver_due_webhooks, storage_factory, webhook_client)
    return Envelope(data=PayoutResponse(
        transaction_id=txn.id,
        payout_id=txn.payout_id,
        utr=txn.payout_tx_hash,
        amount=format_money(txn.payout_amount),
        channel=txn.payout_channel,
        status=txn.status,
    ))
