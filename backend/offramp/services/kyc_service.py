"""
KYC Service — drives a KYC session through its verification methods.

Status: initiated → in_progress → completed, or failed from any
non-terminal state. Each successful check flips only its own flag (and
provider-reported name) with a field-level update; flags never go back to
false. The session completes once every required method is verified.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from offramp.config import Settings, get_settings
from offramp.errors import NotFoundError, ProviderError, StateConflictError, ValidationError
from offramp.models import KYCSession, VerificationAttempt, Partner, OffRampSession
from offramp.services.compliance_service import ComplianceService
from offramp.services.kyc_gateway import KycGateway, VerificationResult
from offramp.services.partner_service import KYC_METHODS
from offramp.storage.base import Storage
from offramp.utils.ids import new_id
from offramp.utils.logger import mask
from offramp.utils.name_match import similarity, confidence
from offramp.utils.timeutils import utcnow
from offramp.utils.validators import (
    validate_aadhaar, validate_pan, validate_upi_vpa, validate_ifsc,
    validate_account_number, validate_otp, sanitize_name,
    validate_driving_license, validate_voter_id, validate_passport, validate_date_of_birth,
)

logger = logging.getLogger(__name__)

DOCUMENT_TYPES = ("aadhaar", "pan", "passport", "driving_license", "voter_id")

FLAG_FIELDS = {method: f"{method}_verified" for method in KYC_METHODS}
NAME_FIELDS = {
    "aadhaar": "aadhaar_name", "pan": "pan_name", "upi": "upi_name", "bank": "bank_name",
    "document": "document_name",
}
# Any of these satisfies the "document" method, but only for the type the KYC session declared
DOCUMENT_CHECKS = ("driving_license", "voter_id", "passport")
ACTIONS = {
    "aadhaar": "AADHAAR_VERIFICATION",
    "pan": "PAN_VERIFICATION",
    "face": "FACE_VERIFICATION",
    "upi": "UPI_VERIFICATION",
    "bank": "BANK_VERIFICATION",
    "driving_license": "DRIVING_LICENSE_VERIFICATION",
    "voter_id": "VOTER_ID_VERIFICATION",
    "passport": "PASSPORT_VERIFICATION",
    "name_match": "NAME_MATCH_VERIFICATION",
}
OTP_METHOD = "aadhaar_otp"


@dataclass
class VerificationOutcome:
    kyc: KYCSession
    result: VerificationResult
    score: Optional[float] = None
    confidence: Optional[str] = None
    compared: Optional[tuple[str, str]] = None


class KycService:
    def __init__(self, storage: Storage, gateway: KycGateway,
                 settings: Optional[Settings] = None, clock: Callable = utcnow):
        self.storage = storage
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.clock = clock

    # ─── Sessions ──────────────────────────────────────────────────────

    def create_kyc_session(self, session: OffRampSession, partner: Partner, user_id: str,
                           document_type: str, document_number: str,
                           holder_name: Optional[str] = None) -> KYCSession:
        if not user_id or not user_id.strip():
            raise ValidationError("userId is required", details={"field": "userId"})
        document_type = (document_type or "").strip().lower()
        if document_type not in DOCUMENT_TYPES:
            raise ValidationError(
                f"Unsupported documentType '{document_type}'",
                details={"field": "documentType", "allowed": list(DOCUMENT_TYPES)},
            )
        if not document_number or not document_number.strip():
            raise ValidationError("documentNumber is required", details={"field": "documentNumber"})

        required = list(partner.required_kyc_methods or self.settings.KYC_REQUIRED_METHODS)
        now = self.clock()
        kyc = KYCSession(
            id=new_id("kyc"),
            partner_id=partner.id,
            session_id=session.id,
            user_id=user_id.strip(),
            document_type=document_type,
            document_number=document_number.strip(),
            holder_name=sanitize_name(holder_name) or None,
            status="initiated",
            required_methods=required,
            created_at=now,
            updated_at=now,
        )
        kyc = self.storage.add(kyc)

        ComplianceService.log(
            self.storage, session.id, "KYC_SESSION_CREATED",
            payload={"kycSessionId": kyc.id, "userId": kyc.user_id, "documentType": document_type},
            partner_id=partner.id,
            metadata={"requiredMethods": required, "document": mask(kyc.document_number)},
        )
        logger.info("[KYC] Session %s created for user %s (requires %s)", kyc.id, kyc.user_id, required)
        return kyc

    def get_kyc_session(self, kyc_session_id: str, partner: Optional[Partner] = None) -> KYCSession:
        kyc = self.storage.get_kyc_session(kyc_session_id) if kyc_session_id else None
        if not kyc or (partner is not None and kyc.partner_id != partner.id):
            raise NotFoundError("KYC session not found")
        return kyc

    @staticmethod
    def verified_methods(kyc: KYCSession) -> list[str]:
        return [method for method, flag in FLAG_FIELDS.items() if getattr(kyc, flag)]

    @staticmethod
    def is_complete(kyc: KYCSession) -> bool:
        return set(kyc.required_methods or []) <= set(KycService.verified_methods(kyc))

    def verification_data(self, kyc: KYCSession) -> dict:
        """Latest provider answer per method, built from the attempt log."""
        summary = {}
        for attempt in self.storage.verification_attempts(kyc.id):
            if attempt.method == OTP_METHOD:
                continue
            summary[attempt.method] = {
                "verified": bool(attempt.verified),
                "name": attempt.name,
                "referenceId": attempt.reference_id,
                "checkedAt": attempt.created_at,
            }
        return summary

    # ─── Shared flow ───────────────────────────────────────────────────

    def _begin(self, kyc_session_id: str, partner: Optional[Partner]) -> KYCSession:
        """Load the session for a verification call and mark it in progress."""
        kyc = self.get_kyc_session(kyc_session_id, partner)
        if kyc.status == "failed":
            raise StateConflictError(
                "KYC session has failed; start a new KYC session",
                code="kyc_failed",
                details={"kycSessionId": kyc.id, "reason": kyc.failure_reason},
            )
        if kyc.status == "initiated":
            started = self.storage.update_kyc_session(kyc.id, {"status": "in_progress"},
                                                      expected={"status": "initiated"})
            kyc = started or self.storage.get_kyc_session(kyc.id)
        return kyc

    def _log_attempt(self, kyc: KYCSession, method: str, result: VerificationResult) -> VerificationAttempt:
        return self.storage.add_verification_attempt(VerificationAttempt(
            kyc_session_id=kyc.id,
            method=method,
            verified=bool(result.verified),
            name=result.name,
            reference_id=result.reference_id,
            response=result.raw or {},
            created_at=self.clock(),
        ))

    def _record(self, kyc: KYCSession, method: str, result: VerificationResult,
                extra_fields: Optional[dict] = None) -> KYCSession:
        self._log_attempt(kyc, method, result)
        flag_method = "document" if method in DOCUMENT_CHECKS else method

        fields = dict(extra_fields or {})
        if result.verified:
            fields[FLAG_FIELDS[flag_method]] = True
            if flag_method in NAME_FIELDS and result.name:
                fields[NAME_FIELDS[flag_method]] = result.name
        if fields:
            kyc = self.storage.update_kyc_session(kyc.id, fields) or kyc

        ComplianceService.log(
            self.storage, kyc.session_id, ACTIONS[method],
            payload={"kycSessionId": kyc.id, "method": method, "verified": bool(result.verified),
                     "referenceId": result.reference_id},
            partner_id=kyc.partner_id,
        )
        logger.info("[KYC] %s %s for %s (ref %s)", method,
                    "verified" if result.verified else "rejected", kyc.id, result.reference_id)

        if not result.verified and not getattr(kyc, FLAG_FIELDS[flag_method]):
            kyc = self._check_rejections(kyc, method)
        return self._refresh_completion(kyc)

    def _check_rejections(self, kyc: KYCSession, method: str) -> KYCSession:
        rejections = sum(1 for a in self.storage.verification_attempts(kyc.id, method) if not a.verified)
        if rejections < self.settings.KYC_MAX_REJECTIONS:
            return kyc
        failed = self.storage.update_kyc_session(
            kyc.id,
            {"status": "failed", "failure_reason": f"{method}_rejected"},
            expected={"status": "in_progress"},
        )
        if failed:
            logger.warning("[KYC] %s failed after %d %s rejections", kyc.id, rejections, method)
        return failed or self.storage.get_kyc_session(kyc.id)

    def _refresh_completion(self, kyc: KYCSession) -> KYCSession:
        if kyc.status != "in_progress" or not self.is_complete(kyc):
            return kyc
        completed = self.storage.update_kyc_session(
            kyc.id,
            {"status": "completed", "completed_at": self.clock()},
            expected={"status": "in_progress"},
        )
        if completed:
            logger.info("[KYC] %s completed (%s)", kyc.id, ", ".join(self.verified_methods(completed)))
        return completed or self.storage.get_kyc_session(kyc.id)

    # ─── Aadhaar (two-step OKYC) ───────────────────────────────────────

    def generate_aadhaar_otp(self, kyc_session_id: str, aadhaar_number: str,
                             partner: Optional[Partner] = None) -> VerificationResult:
        if not validate_aadhaar(aadhaar_number):
            raise ValidationError("aadhaarNumber must be 12 digits", details={"field": "aadhaarNumber"})
        kyc = self._begin(kyc_session_id, partner)
        aadhaar_number = aadhaar_number.replace(" ", "").replace("-", "")

        result = self.gateway.generate_aadhaar_otp(aadhaar_number)
        if not result.reference_id:
            raise ProviderError("Aadhaar OTP request returned no reference id", provider="cashfree")
        self._log_attempt(kyc, OTP_METHOD, result)

        ComplianceService.log(
            self.storage, kyc.session_id, "AADHAAR_OTP_SENT",
            payload={"kycSessionId": kyc.id, "referenceId": result.reference_id},
            partner_id=kyc.partner_id,
            metadata={"aadhaar": mask(aadhaar_number)},
        )
        logger.info("[KYC] Aadhaar OTP sent for %s (aadhaar %s)", kyc.id, mask(aadhaar_number))
        return result

    def verify_aadhaar(self, kyc_session_id: str, aadhaar_number: str, otp: str,
                       partner: Optional[Partner] = None) -> VerificationOutcome:
        if not validate_aadhaar(aadhaar_number):
            raise ValidationError("aadhaarNumber must be 12 digits", details={"field": "aadhaarNumber"})
        if not validate_otp(otp):
            raise ValidationError("otp must be 6 digits", details={"field": "otp"})
        kyc = self._begin(kyc_session_id, partner)

        otp_requests = [a for a in self.storage.verification_attempts(kyc.id, OTP_METHOD)
                        if a.verified and a.reference_id]
        if not otp_requests:
            raise StateConflictError(
                "No Aadhaar OTP reference found; generate an OTP first",
                code="aadhaar_otp_required",
            )
        ref_id = otp_requests[-1].reference_id

        aadhaar_number = aadhaar_number.replace(" ", "").replace("-", "")
        result = self.gateway.verify_aadhaar(ref_id, otp.strip(), aadhaar_number)
        return VerificationOutcome(self._record(kyc, "aadhaar", result), result)

    # ─── Single-call methods ───────────────────────────────────────────

    def verify_pan(self, kyc_session_id: str, pan_number: str, name: str,
                   partner: Optional[Partner] = None) -> VerificationOutcome:
        if not validate_pan(pan_number):
            raise ValidationError("panNumber is not a valid PAN", details={"field": "panNumber"})
        if not name or not name.strip():
            raise ValidationError("name is required", details={"field": "name"})
        kyc = self._begin(kyc_session_id, partner)
        result = self.gateway.verify_pan(pan_number.strip().upper(), name.strip())
        return VerificationOutcome(self._record(kyc, "pan", result), result)

    def verify_face(self, kyc_session_id: str, image: str, action: Optional[str] = None,
                    partner: Optional[Partner] = None) -> VerificationOutcome:
        if not image:
            raise ValidationError("image is required", details={"field": "image"})
        kyc = self._begin(kyc_session_id, partner)
        result = self.gateway.verify_face(image, action or "blink")
        return VerificationOutcome(self._record(kyc, "face", result), result)

    def verify_upi(self, kyc_session_id: str, vpa: str, name: Optional[str] = None,
                   partner: Optional[Partner] = None) -> VerificationOutcome:
        if not validate_upi_vpa(vpa):
            raise ValidationError("vpa must look like user@provider", details={"field": "vpa"})
        kyc = self._begin(kyc_session_id, partner)
        result = self.gateway.verify_upi(vpa.strip(), name)
        return VerificationOutcome(self._record(kyc, "upi", result), result)

    def verify_bank(self, kyc_session_id: str, account_number: str, ifsc: str,
                    name: Optional[str] = None, partner: Optional[Partner] = None) -> VerificationOutcome:
        if not validate_account_number(account_number):
            raise ValidationError("accountNumber must be 9 to 18 digits", details={"field": "accountNumber"})
        if not validate_ifsc(ifsc):
            raise ValidationError("ifsc is not a valid IFSC code", details={"field": "ifsc"})
        kyc = self._begin(kyc_session_id, partner)
        logger.debug("[KYC] Bank check for %s account %s", kyc.id, mask(account_number))
        result = self.gateway.verify_bank(account_number.strip(), ifsc.strip().upper(), name)
        return VerificationOutcome(self._record(kyc, "bank", result), result)

    # ─── Identity documents ────────────────────────────────────────────

    def _begin_document(self, kyc_session_id: str, document_type: str,
                        partner: Optional[Partner]) -> KYCSession:
        kyc = self.get_kyc_session(kyc_session_id, partner)
        if kyc.document_type != document_type:
            raise ValidationError(
                f"KYC session was opened for a {kyc.document_type} document, not {document_type}",
                details={"field": "documentType", "documentType": kyc.document_type},
            )
        return self._begin(kyc_session_id, partner)

    def verify_driving_license(self, kyc_session_id: str, license_number: str, date_of_birth: str,
                               name: Optional[str] = None,
                               partner: Optional[Partner] = None) -> VerificationOutcome:
        if not validate_driving_license(license_number):
            raise ValidationError("licenseNumber is not a valid driving licence number",
                                  details={"field": "licenseNumber"})
        if not validate_date_of_birth(date_of_birth):
            raise ValidationError("dateOfBirth must be a past date (YYYY-MM-DD)", details={"field": "dateOfBirth"})
        kyc = self._begin_document(kyc_session_id, "driving_license", partner)
        number = license_number.replace(" ", "").replace("-", "").upper()
        result = self.gateway.verify_driving_license(number, date_of_birth.strip(), name)
        return VerificationOutcome(self._record(kyc, "driving_license", result), result)

    def verify_voter_id(self, kyc_session_id: str, voter_id: str, name: str,
                        partner: Optional[Partner] = None) -> VerificationOutcome:
        if not validate_voter_id(voter_id):
            raise ValidationError("voterIdNumber is not a valid EPIC number", details={"field": "voterIdNumber"})
        if not name or not name.strip():
            raise ValidationError("name is required", details={"field": "name"})
        kyc = self._begin_document(kyc_session_id, "voter_id", partner)
        result = self.gateway.verify_voter_id(voter_id.strip().upper(), name.strip())
        return VerificationOutcome(self._record(kyc, "voter_id", result), result)

    def verify_passport(self, kyc_session_id: str, passport_number: str, date_of_birth: str,
                        name: Optional[str] = None,
                        partner: Optional[Partner] = None) -> VerificationOutcome:
        if not validate_passport(passport_number):
            raise ValidationError("passportNumber is not a valid passport number",
                                  details={"field": "passportNumber"})
        if not validate_date_of_birth(date_of_birth):
            raise ValidationError("dateOfBirth must be a past date (YYYY-MM-DD)", details={"field": "dateOfBirth"})
        kyc = self._begin_document(kyc_session_id, "passport", partner)
        result = self.gateway.verify_passport(passport_number.strip().upper(), date_of_birth.strip(), name)
        return VerificationOutcome(self._record(kyc, "passport", result), result)

    # ─── Name match ────────────────────────────────────────────────────

    @staticmethod
    def _names_to_compare(kyc: KYCSession, name1: Optional[str], name2: Optional[str]) -> tuple[str, str]:
        if name1 and name2:
            return name1, name2
        # Aadhaar vs PAN first, then any two provider-reported names
        known = [n for n in (kyc.aadhaar_name, kyc.pan_name, kyc.document_name, kyc.upi_name, kyc.bank_name) if n]
        candidates = ([name1] if name1 else []) + [n for n in known if n != name1]
        if name2:
            candidates = [n for n in candidates if n != name2][:1] + [name2]
        if len(candidates) < 2:
            raise ValidationError(
                "Two names are required: pass name1 and name2 or verify two documents first",
                details={"fields": ["name1", "name2"]},
            )
        return candidates[0], candidates[1]

    def verify_name_match(self, kyc_session_id: str, name1: Optional[str] = None,
                          name2: Optional[str] = None,
                          partner: Optional[Partner] = None) -> VerificationOutcome:
        kyc = self._begin(kyc_session_id, partner)
        first, second = self._names_to_compare(kyc, name1, name2)

        score = similarity(first, second)
        matched = score >= self.settings.NAME_MATCH_THRESHOLD
        provider = self.gateway.match_names(first, second)
        result = VerificationResult(
            verified=matched,
            name=sanitize_name(first) if matched else None,
            reference_id=provider.reference_id,
            raw={**provider.raw, "similarity": round(score, 4)},
        )

        extra = {"name_match_score": round(score, 4)}
        if matched:
            extra["verified_name"] = result.name
        kyc = self._record(kyc, "name_match", result, extra_fields=extra)
        return VerificationOutcome(kyc, result, score=score, confidence=confidence(score),
                                   compared=(first, second))
