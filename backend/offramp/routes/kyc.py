"""
KYC Routes — Identity verification endpoints.
Handles: KYC session creation/status, Aadhaar OKYC (OTP), PAN, driving licence,
voter ID, passport, face liveness, UPI, bank account and name matching.
"""
from fastapi import APIRouter, Depends

from offramp.config import get_settings
from offramp.dependencies import get_current_partner, get_kyc_service, get_partner_service
from offramp.models import Partner, KYCSession
from offramp.schemas.schemas import (
    Envelope, KycSessionCreateRequest, KycSessionResponse, KycStatusResponse,
    AadhaarOtpRequest, AadhaarOtpResponse, AadhaarVerifyRequest, PanVerifyRequest,
    UpiVerifyRequest, BankVerifyRequest, FaceVerifyRequest, NameMatchRequest,
    DrivingLicenseVerifyRequest, VoterIdVerifyRequest, PassportVerifyRequest,
    VerificationResponse, NameMatchResponse,
)
from offramp.services.kyc_service import KycService, VerificationOutcome, FLAG_FIELDS, NAME_FIELDS
from offramp.services.partner_service import PartnerService, KYC_METHODS
from offramp.utils.rate_limiter import rate_limit

settings = get_settings()
router = APIRouter(prefix="/api/v1/kyc", tags=["KYC"])

verify_limit = rate_limit(requests=settings.VERIFY_RATE_LIMIT_REQUESTS, window=settings.VERIFY_RATE_LIMIT_WINDOW)


def _verification(method: str, outcome: VerificationOutcome, kycs: KycService) -> VerificationResponse:
    return VerificationResponse(
        kyc_session_id=outcome.kyc.id,
        method=method,
        verified=outcome.result.verified,
        name=outcome.result.name,
        reference_id=outcome.result.reference_id,
        kyc_status=outcome.kyc.status,
        verified_methods=kycs.verified_methods(outcome.kyc),
    )


def _status(kyc: KYCSession, kycs: KycService) -> KycStatusResponse:
    return KycStatusResponse(
        kyc_session_id=kyc.id,
        session_id=kyc.session_id,
        user_id=kyc.user_id,
        status=kyc.status,
        failure_reason=kyc.failure_reason,
        required_methods=kyc.required_methods or [],
        verified_methods=kycs.verified_methods(kyc),
        verification={method: bool(getattr(kyc, flag)) for method, flag in FLAG_FIELDS.items()},
        names={method: getattr(kyc, field) for method, field in NAME_FIELDS.items()},
        verified_name=kyc.verified_name,
        name_match_score=kyc.name_match_score,
        verification_data=kycs.verification_data(kyc),
        created_at=kyc.created_at,
        completed_at=kyc.completed_at,
    )


@router.post("/session/create", response_model=Envelope[KycSessionResponse])
def create_kyc_session(
    payload: KycSessionCreateRequest,
    partner: Partner = Depends(get_current_partner),
    partners: PartnerService = Depends(get_partner_service),
    kycs: KycService = Depends(get_kyc_service),
):
    session = partners.require_active_session(payload.session_id, partner)
    kyc = kycs.create_kyc_session(
        session, partner, payload.user_id, payload.document_type,
        payload.document_number, payload.holder_name,
    )
    return Envelope(data=KycSessionResponse(
        kyc_session_id=kyc.id,
        session_id=kyc.session_id,
        user_id=kyc.user_id,
        status=kyc.status,
        required_methods=kyc.required_methods or [],
        verification_methods=list(KYC_METHODS),
        created_at=kyc.created_at,
    ))


@router.get("/session/{kyc_session_id}/status", response_model=Envelope[KycStatusResponse])
def get_kyc_status(
    kyc_session_id: str,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    kyc = kycs.get_kyc_session(kyc_session_id, partner)
    return Envelope(data=_status(kyc, kycs))


# ─── Aadhaar OKYC ────────────────────────────────────────────────────

@router.post("/aadhaar/generate-otp", response_model=Envelope[AadhaarOtpResponse],
             dependencies=[Depends(verify_limit)])
def generate_aadhaar_otp(
    payload: AadhaarOtpRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    """Step 1: send an OTP to the Aadhaar-linked mobile number."""
    result = kycs.generate_aadhaar_otp(payload.kyc_session_id, payload.aadhaar_number, partner)
    kyc = kycs.get_kyc_session(payload.kyc_session_id, partner)
    return Envelope(data=AadhaarOtpResponse(
        ref_id=result.reference_id,
        message=result.raw.get("message") or "OTP sent successfully",
        kyc_status=kyc.status,
    ))


@router.post("/aadhaar/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)])
def verify_aadhaar(
    payload: AadhaarVerifyRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    """Step 2: submit the OTP against the stored reference."""
    outcome = kycs.verify_aadhaar(payload.kyc_session_id, payload.aadhaar_number, payload.otp, partner)
    return Envelope(data=_verification("aadhaar", outcome, kycs))


# ─── Document & instrument checks ────────────────────────────────────

@router.post("/pan/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)])
def verify_pan(
    payload: PanVerifyRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    outcome = kycs.verify_pan(payload.kyc_session_id, payload.pan_number, payload.name, partner)
    return Envelope(data=_verification("pan", outcome, kycs))


@router.post("/driving-license/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)])
def verify_driving_license(
    payload: DrivingLicenseVerifyRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    outcome = kycs.verify_driving_license(payload.kyc_session_id, payload.license_number,
                                          payload.date_of_birth, payload.name, partner)
    return Envelope(data=_verification("driving_license", outcome, kycs))


@router.post("/voter-id/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)])
def verify_voter_id(
    payload: VoterIdVerifyRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    outcome = kycs.verify_voter_id(payload.kyc_session_id, payload.voter_id_number, payload.name, partner)
    return Envelope(data=_verification("voter_id", outcome, kycs))


@router.post("/passport/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)])
def verify_passport(
    payload: PassportVerifyRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    outcome = kycs.verify_passport(payload.kyc_session_id, payload.passport_number,
                                   payload.date_of_birth, payload.name, partner)
    return Envelope(data=_verification("passport", outcome, kycs))


@router.post("/face/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)])
@router.post("/face-liveness/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)], include_in_schema=False)
def verify_face(
    payload: FaceVerifyRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    outcome = kycs.verify_face(payload.kyc_session_id, payload.image, payload.action, partner)
    return Envelope(data=_verification("face", outcome, kycs))


@router.post("/upi/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)])
def verify_upi(
    payload: UpiVerifyRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    outcome = kycs.verify_upi(payload.kyc_session_id, payload.vpa, payload.name, partner)
    return Envelope(data=_verification("upi", outcome, kycs))


@router.post("/bank/verify", response_model=Envelope[VerificationResponse],
             dependencies=[Depends(verify_limit)])
def verify_bank(
    payload: BankVerifyRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    outcome = kycs.verify_bank(payload.kyc_session_id, payload.account_number, payload.ifsc,
                               payload.name, partner)
    return Envelope(data=_verification("bank", outcome, kycs))


@router.post("/name-match/verify", response_model=Envelope[NameMatchResponse],
             dependencies=[Depends(verify_limit)])
def verify_name_match(
    payload: NameMatchRequest,
    partner: Partner = Depends(get_current_partner),
    kycs: KycService = Depends(get_kyc_service),
):
    """Compare two names (or the Aadhaar and PAN names on file)."""
    outcome = kycs.verify_name_match(payload.kyc_session_id, payload.name1, payload.name2, partner)
    base = _verification("name_match", outcome, kycs)
    return Envelope(data=NameMatchResponse(
        **base.model_dump(),
        similarity=round(outcome.score, 4),
        confidence=outcome.confidence,
        name1=outcome.compared[0],
        name2=outcome.compared[1],
    ))
