"""
Pydantic Schemas — Request & Response models for API validation.

Field names are snake_case in Python and camelCase on the wire.
Money is always rendered as a decimal string.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from offramp.services.fee_calculator import format_money

T = TypeVar("T")

def kyc_session_id_field():
    """Verification calls accept the KYC session id as kycSessionId or sessionId."""
    return Field(
        ...,
        validation_alias=AliasChoices("kycSessionId", "sessionId", "kyc_session_id"),
        description="KYC session identifier (kyc_...)",
    )


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Envelope(ApiModel, Generic[T]):
    success: bool = True
    data: T


class ErrorResponse(ApiModel):
    success: bool = False
    error: str
    message: str
    details: Optional[Any] = None


# ──────────────── Session ────────────────

class SessionCreateRequest(ApiModel):
    callback_url: Optional[str] = Field(None, description="Webhook URL for this session's events")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionResponse(ApiModel):
    session_id: str
    token: Optional[str] = None
    status: str
    callback_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, session, include_token: bool = False) -> "SessionResponse":
        return cls(
            session_id=session.id,
            token=session.token if include_token else None,
            status=session.status,
            callback_url=session.callback_url,
            metadata=session.meta or {},
            expires_at=session.expires_at,
            created_at=session.created_at,
        )


# ──────────────── Quote ────────────────

class QuoteBreakdown(ApiModel):
    tds: str
    platform_fee: str
    gst: str
    net_inr: str


class DepositAddressInfo(ApiModel):
    network: str
    address: str
    min_confirmations: int


class QuoteResponse(ApiModel):
    quote_id: str
    session_id: str
    asset: str
    network: str
    amount_usd: str
    fx_rate: str
    markup_pct: str
    gross_inr: str
    breakdown: QuoteBreakdown
    estimated_inr: str
    deposit_address: DepositAddressInfo
    status: str
    expires_at: datetime
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, quote) -> "QuoteResponse":
        return cls(
            quote_id=quote.id,
            session_id=quote.session_id,
            asset=quote.asset,
            network=quote.network,
            amount_usd=format_money(quote.amount_usd),
            fx_rate=format_money(quote.fx_rate),
            markup_pct=format_money(quote.markup_pct),
            gross_inr=format_money(quote.gross_inr),
            breakdown=QuoteBreakdown(
                tds=format_money(quote.tds_amount),
                platform_fee=format_money(quote.platform_fee),
                gst=format_money(quote.gst_amount),
                net_inr=format_money(quote.estimated_inr),
            ),
            estimated_inr=format_money(quote.estimated_inr),
            deposit_address=DepositAddressInfo(
                network=quote.network,
                address=quote.deposit_address,
                min_confirmations=quote.min_confirmations,
            ),
            status=quote.status,
            expires_at=quote.expires_at,
            created_at=quote.created_at,
        )


# ──────────────── KYC ────────────────

class KycSessionCreateRequest(ApiModel):
    session_id: str
    user_id: str
    document_type: str = Field(..., description="aadhaar | pan | passport | driving_license | voter_id")
    document_number: str
    holder_name: Optional[str] = None


class KycSessionResponse(ApiModel):
    kyc_session_id: str
    session_id: str
    user_id: str
    status: str
    required_methods: List[str]
    verification_methods: List[str]
    created_at: Optional[datetime] = None


class KycStatusResponse(ApiModel):
    kyc_session_id: str
    session_id: str
    user_id: str
    status: str
    failure_reason: Optional[str] = None
    required_methods: List[str]
    verified_methods: List[str]
    verification: Dict[str, bool]
    names: Dict[str, Optional[str]]
    verified_name: Optional[str] = None
    name_match_score: Optional[float] = None
    verification_data: Dict[str, Any]
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AadhaarOtpRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    aadhaar_number: str


class AadhaarOtpResponse(ApiModel):
    ref_id: str
    message: str
    kyc_status: str


class AadhaarVerifyRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    aadhaar_number: str
    otp: str


class PanVerifyRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    pan_number: str
    name: str


class UpiVerifyRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    vpa: str
    name: Optional[str] = None


class BankVerifyRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    account_number: str
    ifsc: str
    name: Optional[str] = None


class DrivingLicenseVerifyRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    license_number: str
    date_of_birth: str = Field(..., description="YYYY-MM-DD")
    name: Optional[str] = None


class VoterIdVerifyRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    voter_id_number: str
    name: str


class PassportVerifyRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    passport_number: str
    date_of_birth: str = Field(..., description="YYYY-MM-DD")
    name: Optional[str] = None


class FaceVerifyRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    image: str = Field(..., validation_alias=AliasChoices("image", "imageData"),
                       description="Base64 encoded selfie")
    action: Optional[str] = Field(None, description="Liveness action, default blink")


class NameMatchRequest(ApiModel):
    kyc_session_id: str = kyc_session_id_field()
    name1: Optional[str] = None
    name2: Optional[str] = None


class VerificationResponse(ApiModel):
    kyc_session_id: str
    method: str
    verified: bool
    name: Optional[str] = None
    reference_id: Optional[str] = None
    kyc_status: str
    verified_methods: List[str]


class NameMatchResponse(VerificationResponse):
    similarity: float
    confidence: str
    name1: str
    name2: str


# ──────────────── Transactions ────────────────

class TransactionCreateRequest(ApiModel):
    session_id: str
    quote_id: str
    kyc_session_id: str
    asset: str
    network: str


class TransactionCreateResponse(ApiModel):
    transaction_id: str
    status: str
    asset: str
    network: str
    deposit_address: str
    expected_amount: str
    expires_at: datetime


class DepositInfo(ApiModel):
    address: Optional[str] = None
    expected_amount: str
    deposited_amount: Optional[str] = None
    tx_hash: Optional[str] = None
    confirmed_at: Optional[datetime] = None


class PayoutInfo(ApiModel):
    amount: Optional[str] = None
    channel: Optional[str] = None
    destination: Optional[str] = None
    payout_id: Optional[str] = None
    utr: Optional[str] = None
    initiated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Financials(ApiModel):
    amount_usd: str
    fx_rate: str
    gross_inr: str
    tds: str
    platform_fee: str
    gst: str
    net_inr: str


class TransactionResponse(ApiModel):
    transaction_id: str
    session_id: str
    quote_id: str
    kyc_session_id: str
    user_id: str
    status: str
    failure_reason: Optional[str] = None
    asset: str
    network: str
    deposit: DepositInfo
    payout: PayoutInfo
    financials: Optional[Financials] = None
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, txn, quote=None) -> "TransactionResponse":
        financials = None
        if quote is not None:
            financials = Financials(
                amount_usd=format_money(quote.amount_usd),
                fx_rate=format_money(quote.fx_rate),
                gross_inr=format_money(quote.gross_inr),
                tds=format_money(quote.tds_amount),
                platform_fee=format_money(quote.platform_fee),
                gst=format_money(quote.gst_amount),
                net_inr=format_money(quote.estimated_inr),
            )
        return cls(
            transaction_id=txn.id,
            session_id=txn.session_id,
            quote_id=txn.quote_id,
            kyc_session_id=txn.kyc_session_id,
            user_id=txn.user_id,
            status=txn.status,
            failure_reason=txn.failure_reason,
            asset=txn.asset,
            network=txn.network,
            deposit=DepositInfo(
                address=txn.deposit_address,
                expected_amount=format_money(txn.expected_amount),
                deposited_amount=format_money(txn.deposited_amount),
                tx_hash=txn.deposit_tx_hash,
                confirmed_at=txn.deposit_confirmed_at,
            ),
            payout=PayoutInfo(
                amount=format_money(txn.payout_amount),
                channel=txn.payout_channel,
                destination=txn.payout_destination,
                payout_id=txn.payout_id,
                utr=txn.payout_tx_hash,
                initiated_at=txn.payout_initiated_at,
                completed_at=txn.completed_at,
            ),
            financials=financials,
            expires_at=txn.expires_at,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )


class DepositRequest(ApiModel):
    transaction_id: str
    amount: Decimal = Field(..., description="Deposited stablecoin amount (USD)")
    tx_hash: str


class PayoutRequest(ApiModel):
    transaction_id: str
    channel: str = Field(..., description="upi | bank | imps | neft")
    destination: str = Field(..., description="UPI VPA or bank account reference")
    amount: Optional[Decimal] = Field(None, description="INR amount, defaults to the quoted net INR")


class PayoutResponse(ApiModel):
    transaction_id: str
    payout_id: str
    utr: str
    amount: str
    channel: str
    status: str


class CancelRequest(ApiModel):
    reason: Optional[str] = None


# ──────────────── Webhooks / Admin ────────────────

class WebhookTestResponse(ApiModel):
    signature_valid: bool
    event: Optional[str] = None
    timestamp: Optional[str] = None
    payload: Optional[Any] = None


class WebhookEventResponse(ApiModel):
    event_id: str
    partner_id: str
    event_type: str
    session_id: Optional[str] = None
    transaction_id: Optional[str] = None
    webhook_url: str
    status: str
    attempts: int
    max_attempts: int
    last_attempt: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    last_status_code: Optional[int] = None
    error_message: Optional[str] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, event) -> "WebhookEventResponse":
        return cls(
            event_id=event.id,
            partner_id=event.partner_id,
            event_type=event.event_type,
            session_id=event.session_id,
            transaction_id=event.transaction_id,
            webhook_url=event.webhook_url,
            status=event.status,
            attempts=event.attempts or 0,
            max_attempts=event.max_attempts,
            last_attempt=event.last_attempt,
            next_retry_at=event.next_retry_at,
            last_status_code=event.last_status_code,
            error_message=event.error_message,
            delivered_at=event.delivered_at,
            created_at=event.created_at,
        )


class ComplianceEntry(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    action: str
    payload_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    log_metadata: Optional[Dict] = None
    timestamp: datetime


class ComplianceTrailResponse(ApiModel):
    session_id: str
    entries: List[ComplianceEntry]
    chain: Dict[str, Any]
