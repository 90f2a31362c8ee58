"""
KYC Verification Gateway — adapters to the external identity providers.

Cashfree (Aadhaar OKYC, PAN, driving licence, voter ID, passport, face
liveness, name match) and Surepass (UPI, bank account) are wrapped behind
one `KycGateway` interface that returns a normalized `VerificationResult`.
Transport and parsing failures are classified into the ProviderError family:

    network error / timeout / 5xx      -> ProviderUnavailable
    HTML body (credentials / IP list)  -> ProviderUnavailable, with guidance
    malformed JSON                     -> ProviderError
    4xx with JSON body                 -> ProviderRejected
    2xx with a negative verdict        -> VerificationResult(verified=False)

`SandboxKycGateway` answers deterministically without network access.
"""
import base64
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from offramp.config import Settings
from offramp.errors import ProviderError, ProviderRejected, ProviderUnavailable
from offramp.utils.name_match import similarity
from offramp.utils.timeutils import unix_seconds
from offramp.utils.validators import sanitize_name

logger = logging.getLogger(__name__)

HTML_GUIDANCE = (
    "returned an HTML page instead of JSON. This usually means the API "
    "credentials are wrong or this server's IP address is not whitelisted "
    "with the provider."
)
POSITIVE_STATUSES = {"VALID", "SUCCESS", "VERIFIED", "ACTIVE"}


@dataclass
class VerificationResult:
    verified: bool
    name: Optional[str] = None
    reference_id: Optional[str] = None
    raw: dict = field(default_factory=dict)


class KycGateway(ABC):
    @abstractmethod
    def generate_aadhaar_otp(self, aadhaar_number: str) -> VerificationResult:
        """Send an OTP to the Aadhaar-linked mobile. `reference_id` carries the OKYC ref."""

    @abstractmethod
    def verify_aadhaar(self, ref_id: str, otp: str, aadhaar_number: str) -> VerificationResult: ...

    @abstractmethod
    def verify_pan(self, pan: str, name: str) -> VerificationResult: ...

    @abstractmethod
    def verify_face(self, image: str, action: str) -> VerificationResult: ...

    @abstractmethod
    def verify_upi(self, vpa: str, name: Optional[str]) -> VerificationResult: ...

    @abstractmethod
    def verify_bank(self, account_number: str, ifsc: str, name: Optional[str]) -> VerificationResult: ...

    @abstractmethod
    def verify_driving_license(self, license_number: str, date_of_birth: str,
                               name: Optional[str]) -> VerificationResult: ...

    @abstractmethod
    def verify_voter_id(self, voter_id: str, name: str) -> VerificationResult: ...

    @abstractmethod
    def verify_passport(self, passport_number: str, date_of_birth: str,
                        name: Optional[str]) -> VerificationResult: ...

    @abstractmethod
    def match_names(self, name1: str, name2: str) -> VerificationResult:
        """Provider-side record of a name comparison. The verdict is decided locally."""


def _status_positive(data: dict, *keys: str) -> bool:
    for key in keys:
        value = data.get(key)
        if isinstance(value, bool):
            if value:
                return True
        elif isinstance(value, str) and value.upper() in POSITIVE_STATUSES:
            return True
    return False


def _looks_like_html(response: httpx.Response) -> bool:
    if "text/html" in response.headers.get("content-type", "").lower():
        return True
    head = response.text.lstrip()[:15].lower()
    return head.startswith("<!doctype") or head.startswith("<html")


class JsonProviderClient:
    """POSTs JSON to one provider and classifies what comes back."""

    provider = "provider"

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def headers(self) -> dict:
        return {"Content-Type": "application/json"}

    def post(self, path: str, body: dict, extra_headers: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        headers = {**self.headers(), **(extra_headers or {})}
        try:
            if self._client is not None:
                response = self._client.post(url, json=body, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(url, json=body, headers=headers)
        except httpx.TimeoutException:
            logger.warning("[%s] %s timed out after %ss", self.provider.upper(), path, self.timeout)
            raise ProviderUnavailable(f"{self.provider} did not respond in time", provider=self.provider)
        except httpx.HTTPError as e:
            logger.warning("[%s] %s network error: %s", self.provider.upper(), path, e)
            raise ProviderUnavailable(f"{self.provider} is unreachable", provider=self.provider)
        except httpx.InvalidURL as e:
            raise ProviderUnavailable(f"{self.provider} base URL is invalid: {e}", provider=self.provider) from e

        return self.parse(path, response)

    def parse(self, path: str, response: httpx.Response) -> dict:
        status = response.status_code
        logger.debug("[%s] %s -> %s %s", self.provider.upper(), path, status, response.text[:300])

        if _looks_like_html(response):
            raise ProviderUnavailable(
                f"{self.provider} {HTML_GUIDANCE}",
                provider=self.provider,
                details={"providerStatus": status},
            )
        if status >= 500:
            raise ProviderUnavailable(
                f"{self.provider} is temporarily unavailable",
                provider=self.provider,
                details={"providerStatus": status},
            )

        try:
            data = response.json()
        except ValueError:
            raise ProviderError(
                f"{self.provider} returned a malformed response",
                provider=self.provider,
                details={"providerStatus": status},
            )
        if not isinstance(data, dict):
            raise ProviderError(
                f"{self.provider} returned an unexpected response shape",
                provider=self.provider,
                details={"providerStatus": status},
            )

        if status >= 400:
            reason = data.get("message") or data.get("error_msg") or data.get("error") or "request rejected"
            raise ProviderRejected(
                f"{self.provider} rejected the request: {reason}",
                provider=self.provider,
                details={"providerStatus": status, "reason": str(reason)},
            )
        return data


class CashfreeClient(JsonProviderClient):
    """Cashfree Secure ID (verification) API."""

    provider = "cashfree"

    def __init__(self, client_id: str, client_secret: str, public_key: str = "",
                 base_url: str = "https://api.cashfree.com/verification", timeout: float = 10.0,
                 client: Optional[httpx.Client] = None):
        super().__init__(base_url, timeout, client)
        self.client_id = client_id
        self.client_secret = client_secret
        self.public_key = public_key

    def signature(self, timestamp: Optional[int] = None) -> str:
        """Base64 RSA-OAEP encryption of '{client_id}.{unix_ts}' with the Cashfree public key."""
        pem = self.public_key.strip().replace("\\n", "\n")
        if not pem.startswith("-----BEGIN"):
            pem = f"-----BEGIN PUBLIC KEY-----\n{pem}\n-----END PUBLIC KEY-----"
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
        message = f"{self.client_id}.{timestamp or unix_seconds()}".encode("utf-8")
        encrypted = key.encrypt(
            message,
            padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA1()), algorithm=hashes.SHA1(), label=None),
        )
        return base64.b64encode(encrypted).decode("ascii")

    def headers(self) -> dict:
        if not self.client_id or not self.client_secret:
            raise ProviderUnavailable("Cashfree credentials are not configured", provider=self.provider)
        headers = {
            "Content-Type": "application/json",
            "X-Client-Id": self.client_id,
            "X-Client-Secret": self.client_secret,
        }
        if self.public_key:
            try:
                headers["X-Cf-Signature"] = self.signature()
            except ValueError as e:
                raise ProviderUnavailable(f"Cashfree public key is invalid: {e}", provider=self.provider)
        return headers

    @staticmethod
    def _reference(data: dict) -> Optional[str]:
        for key in ("ref_id", "reference_id", "verification_id"):
            if data.get(key) not in (None, ""):
                return str(data[key])
        return None

    def generate_aadhaar_otp(self, aadhaar_number: str) -> VerificationResult:
        data = self.post("/offline-aadhaar/otp", {"aadhaar_number": aadhaar_number})
        ref_id = self._reference(data)
        # No ref_id means nothing to verify against later
        return VerificationResult(verified=bool(ref_id), reference_id=ref_id, raw=data)

    def verify_aadhaar(self, ref_id: str, otp: str, aadhaar_number: str) -> VerificationResult:
        data = self.post("/offline-aadhaar/verify", {"ref_id": ref_id, "otp": otp})
        return VerificationResult(
            verified=_status_positive(data, "status", "verification_status"),
            name=data.get("name"),
            reference_id=self._reference(data) or ref_id,
            raw=data,
        )

    def verify_pan(self, pan: str, name: str) -> VerificationResult:
        data = self.post("/pan", {"pan": pan, "name": name})
        return VerificationResult(
            verified=_status_positive(data, "valid", "verification_status", "status"),
            name=data.get("registered_name") or data.get("name_pan_card") or data.get("name"),
            reference_id=self._reference(data),
            raw=data,
        )

    def verify_face(self, image: str, action: str) -> VerificationResult:
        data = self.post(
            "/face-liveness",
            {"verification_id": uuid.uuid4().hex, "image": image, "action": action},
            extra_headers={"x-api-version": "2022-01-01"},
        )
        return VerificationResult(
            verified=_status_positive(data, "liveness", "verification_status", "status"),
            reference_id=self._reference(data),
            raw=data,
        )

    def _document(self, path: str, body: dict) -> VerificationResult:
        data = self.post(path, {"verification_id": uuid.uuid4().hex, **body})
        # Document endpoints may nest the verdict under `data`
        details = data.get("data") if isinstance(data.get("data"), dict) else data
        return VerificationResult(
            verified=_status_positive(details, "verification_status", "status", "valid"),
            name=details.get("name") or details.get("name_on_card"),
            reference_id=self._reference(details) or self._reference(data),
            raw=data,
        )

    def verify_driving_license(self, license_number: str, date_of_birth: str,
                               name: Optional[str]) -> VerificationResult:
        return self._document("/driving-license", {
            "license_number": license_number, "date_of_birth": date_of_birth, "name": name or "",
        })

    def verify_voter_id(self, voter_id: str, name: str) -> VerificationResult:
        return self._document("/voter-id", {"voter_id": voter_id, "name": name})

    def verify_passport(self, passport_number: str, date_of_birth: str,
                        name: Optional[str]) -> VerificationResult:
        return self._document("/passport", {
            "passport_number": passport_number, "date_of_birth": date_of_birth, "name": name or "",
        })

    def match_names(self, name1: str, name2: str) -> VerificationResult:
        data = self.post("/name-match", {"verification_id": uuid.uuid4().hex, "name_1": name1, "name_2": name2})
        return VerificationResult(
            verified=_status_positive(data, "status"),
            reference_id=self._reference(data),
            raw=data,
        )


class SurepassClient(JsonProviderClient):
    """Surepass bank-verification API (UPI and bank account)."""

    provider = "surepass"

    def __init__(self, api_token: str, base_url: str = "https://kyc-api.surepass.app/api/v1",
                 timeout: float = 10.0, client: Optional[httpx.Client] = None):
        super().__init__(base_url, timeout, client)
        self.api_token = api_token

    def headers(self) -> dict:
        if not self.api_token:
            raise ProviderUnavailable("Surepass API token is not configured", provider=self.provider)
        return {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_token}"}

    @staticmethod
    def _result(data: dict, fallback_name: Optional[str]) -> VerificationResult:
        payload = data.get("data") if isinstance(data.get("data"), dict) else {}
        exists = payload.get("account_exists")
        verified = bool(data.get("success")) and exists is not False
        reference = payload.get("client_id") or payload.get("verification_id")
        return VerificationResult(
            verified=verified,
            name=payload.get("full_name") or payload.get("name") or (fallback_name if verified else None),
            reference_id=str(reference) if reference else None,
            raw=data,
        )

    def verify_upi(self, vpa: str, name: Optional[str]) -> VerificationResult:
        data = self.post("/bank-verification/upi-verification", {"vpa": vpa, "name": name})
        return self._result(data, name)

    def verify_bank(self, account_number: str, ifsc: str, name: Optional[str]) -> VerificationResult:
        data = self.post(
            "/bank-verification/bank-account-verification",
            {"id_number": account_number, "ifsc": ifsc, "name": name},
        )
        return self._result(data, name)


class ProviderKycGateway(KycGateway):
    """Production routing: identity checks to Cashfree, payment instruments to Surepass."""

    def __init__(self, cashfree: CashfreeClient, surepass: SurepassClient):
        self.cashfree = cashfree
        self.surepass = surepass

    def generate_aadhaar_otp(self, aadhaar_number):
        return self.cashfree.generate_aadhaar_otp(aadhaar_number)

    def verify_aadhaar(self, ref_id, otp, aadhaar_number):
        return self.cashfree.verify_aadhaar(ref_id, otp, aadhaar_number)

    def verify_pan(self, pan, name):
        return self.cashfree.verify_pan(pan, name)

    def verify_face(self, image, action):
        return self.cashfree.verify_face(image, action)

    def verify_upi(self, vpa, name):
        return self.surepass.verify_upi(vpa, name)

    def verify_bank(self, account_number, ifsc, name):
        return self.surepass.verify_bank(account_number, ifsc, name)

    def verify_driving_license(self, license_number, date_of_birth, name):
        return self.cashfree.verify_driving_license(license_number, date_of_birth, name)

    def verify_voter_id(self, voter_id, name):
        return self.cashfree.verify_voter_id(voter_id, name)

    def verify_passport(self, passport_number, date_of_birth, name):
        return self.cashfree.verify_passport(passport_number, date_of_birth, name)

    def match_names(self, name1, name2):
        return self.cashfree.match_names(name1, name2)


class SandboxKycGateway(KycGateway):
    """
    Deterministic verifier for integration testing.

    Every check passes except when the identifier contains the marker
    `fail` (any case), or the OTP is 000000; the reported name is the one the
    partner supplied, or SANDBOX_NAME. Document numbers are too short to
    carry the marker, so driving licence, voter ID and passport checks also
    look for it in the supplied name.
    """

    SANDBOX_NAME = "Sandbox User"
    REJECT_MARKER = "fail"
    REJECT_OTP = "000000"

    @staticmethod
    def _ref() -> str:
        return f"sandbox_{uuid.uuid4().hex[:12]}"

    def _result(self, identifier: str, name: Optional[str] = None, **raw: Any) -> VerificationResult:
        verified = self.REJECT_MARKER not in (identifier or "").lower()
        reported = sanitize_name(name) or self.SANDBOX_NAME
        return VerificationResult(
            verified=verified,
            name=reported if verified else None,
            reference_id=self._ref(),
            raw={"sandbox": True, "status": "VALID" if verified else "INVALID", **raw},
        )

    def generate_aadhaar_otp(self, aadhaar_number):
        return VerificationResult(
            verified=True,
            reference_id=self._ref(),
            raw={"sandbox": True, "status": "SUCCESS", "message": "OTP sent successfully"},
        )

    def verify_aadhaar(self, ref_id, otp, aadhaar_number):
        verified = otp != self.REJECT_OTP
        return VerificationResult(
            verified=verified,
            name=self.SANDBOX_NAME if verified else None,
            reference_id=ref_id,
            raw={"sandbox": True, "status": "VALID" if verified else "INVALID"},
        )

    def verify_pan(self, pan, name):
        return self._result(pan, name)

    def verify_face(self, image, action):
        return self._result(image, None, action=action)

    def verify_upi(self, vpa, name):
        return self._result(vpa, name)

    def verify_bank(self, account_number, ifsc, name):
        return self._result(f"{account_number}{ifsc}", name)

    def verify_driving_license(self, license_number, date_of_birth, name):
        return self._result(f"{license_number} {name or ''}", name, date_of_birth=date_of_birth)

    def verify_voter_id(self, voter_id, name):
        return self._result(f"{voter_id} {name}", name)

    def verify_passport(self, passport_number, date_of_birth, name):
        return self._result(f"{passport_number} {name or ''}", name, date_of_birth=date_of_birth)

    def match_names(self, name1, name2):
        score = similarity(name1, name2)
        return VerificationResult(
            verified=True,
            reference_id=self._ref(),
            raw={"sandbox": True, "score": round(score, 4)},
        )


def make_kyc_gateway(settings: Settings) -> KycGateway:
    if settings.is_sandbox:
        return SandboxKycGateway()
    return ProviderKycGateway(
        CashfreeClient(
            client_id=settings.CASHFREE_CLIENT_ID,
            client_secret=settings.CASHFREE_CLIENT_SECRET,
            public_key=settings.CASHFREE_PUBLIC_KEY,
            base_url=settings.CASHFREE_BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        ),
        SurepassClient(
            api_token=settings.SUREPASS_API_TOKEN,
            base_url=settings.SUREPASS_BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        ),
    )
