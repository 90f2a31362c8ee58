import pytest

from offramp.errors import NotFoundError, StateConflictError, ValidationError
from offramp.models import ComplianceLog
from offramp.services.compliance_service import ComplianceService

AADHAAR = "234567890123"


@pytest.fixture
def kyc(kycs, session, partner):
    return kycs.create_kyc_session(session, partner, "user-1", "PAN", "ABCPK1234F", "rahul kumar")


def verify_aadhaar(kycs, kyc, otp="123456"):
    kycs.generate_aadhaar_otp(kyc.id, AADHAAR)
    return kycs.verify_aadhaar(kyc.id, AADHAAR, otp)


def test_new_session_uses_default_required_methods(kyc):
    assert kyc.status == "initiated"
    assert kyc.required_methods == ["aadhaar", "pan"]
    assert kyc.document_type == "pan"
    assert kyc.holder_name == "Rahul Kumar"


def test_partner_specific_required_methods(kycs, partners):
    strict = partners.create_partner("Strict Pay", "kyc@strict.example",
                                     required_kyc_methods=["pan", "upi", "name_match"])
    strict_session = partners.create_session(strict)
    kyc = kycs.create_kyc_session(strict_session, strict, "user-9", "pan", "ABCPK1234F")

    kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar")
    kycs.verify_upi(kyc.id, "rahul@okaxis", "Rahul Kumar")
    assert kycs.get_kyc_session(kyc.id).status == "in_progress"

    outcome = kycs.verify_name_match(kyc.id)
    assert outcome.kyc.status == "completed"
    assert not outcome.kyc.aadhaar_verified


def test_first_attempt_moves_to_in_progress_and_completion_follows(kycs, kyc):
    otp = kycs.generate_aadhaar_otp(kyc.id, AADHAAR)
    assert otp.reference_id
    assert kycs.get_kyc_session(kyc.id).status == "in_progress"

    outcome = kycs.verify_aadhaar(kyc.id, AADHAAR, "123456")
    assert outcome.kyc.aadhaar_verified
    assert outcome.kyc.aadhaar_name == "Sandbox User"
    assert outcome.kyc.status == "in_progress"

    outcome = kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar")
    assert outcome.kyc.status == "completed"
    assert outcome.kyc.completed_at is not None
    assert kycs.verified_methods(outcome.kyc) == ["aadhaar", "pan"]


def test_aadhaar_verify_requires_an_otp_first(kycs, kyc):
    with pytest.raises(StateConflictError) as exc:
        kycs.verify_aadhaar(kyc.id, AADHAAR, "123456")
    assert exc.value.code == "aadhaar_otp_required"


def test_flags_never_regress(kycs, kyc):
    verify_aadhaar(kycs, kyc)
    kycs.verify_upi(kyc.id, "rahul@okaxis", "Rahul Kumar")

    # A later failed UPI check does not undo the earlier success
    outcome = kycs.verify_upi(kyc.id, "fail@okaxis", "Rahul Kumar")
    assert not outcome.result.verified
    assert outcome.kyc.upi_verified
    assert outcome.kyc.aadhaar_verified
    assert outcome.kyc.upi_name == "Rahul Kumar"


def test_rejection_leaves_other_flags_alone(kycs, kyc):
    verify_aadhaar(kycs, kyc)
    outcome = kycs.verify_pan(kyc.id, "FAILX1234F", "Rahul Kumar")
    assert not outcome.result.verified
    assert not outcome.kyc.pan_verified
    assert outcome.kyc.aadhaar_verified
    assert outcome.kyc.status == "in_progress"


def test_repeated_rejections_fail_the_session(kycs, kyc):
    for _ in range(2):
        assert kycs.verify_pan(kyc.id, "FAILX1234F", "Rahul Kumar").kyc.status == "in_progress"
    outcome = kycs.verify_pan(kyc.id, "FAILX1234F", "Rahul Kumar")
    assert outcome.kyc.status == "failed"
    assert outcome.kyc.failure_reason == "pan_rejected"

    with pytest.raises(StateConflictError) as exc:
        kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar")
    assert exc.value.code == "kyc_failed"


def test_wrong_otp_is_a_rejection_not_an_error(kycs, kyc):
    outcome = verify_aadhaar(kycs, kyc, otp="000000")
    assert not outcome.result.verified
    assert not outcome.kyc.aadhaar_verified


@pytest.mark.parametrize("call", [
    lambda kycs, kyc_id: kycs.generate_aadhaar_otp(kyc_id, "12345"),
    lambda kycs, kyc_id: kycs.verify_aadhaar(kyc_id, AADHAAR, "12ab56"),
    lambda kycs, kyc_id: kycs.verify_pan(kyc_id, "ABC123", "Rahul"),
    lambda kycs, kyc_id: kycs.verify_pan(kyc_id, "ABCPK1234F", " "),
    lambda kycs, kyc_id: kycs.verify_upi(kyc_id, "not-a-vpa"),
    lambda kycs, kyc_id: kycs.verify_bank(kyc_id, "12ab", "HDFC0001234"),
    lambda kycs, kyc_id: kycs.verify_bank(kyc_id, "123456789012", "HDFC1234"),
    lambda kycs, kyc_id: kycs.verify_face(kyc_id, ""),
])
def test_malformed_inputs_never_reach_the_provider(kycs, kyc, call):
    with pytest.raises(ValidationError):
        call(kycs, kyc.id)
    assert kycs.get_kyc_session(kyc.id).status == "initiated"


def test_face_and_bank_checks(kycs, kyc):
    assert kycs.verify_face(kyc.id, "data:image/jpeg;base64,AAAA", "smile").kyc.face_verified
    outcome = kycs.verify_bank(kyc.id, "123456789012", "hdfc0001234", "Rahul Kumar")
    assert outcome.kyc.bank_verified
    assert outcome.kyc.bank_name == "Rahul Kumar"


def test_name_match_defaults_to_provider_names(kycs, kyc):
    kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar")
    kycs.verify_upi(kyc.id, "rahul@okaxis", "Rahul Kumaar")

    outcome = kycs.verify_name_match(kyc.id)
    assert outcome.compared == ("Rahul Kumar", "Rahul Kumaar")
    assert outcome.result.verified
    assert outcome.confidence == "HIGH"
    assert outcome.kyc.name_match_verified
    assert outcome.kyc.verified_name == "Rahul Kumar"
    assert outcome.kyc.name_match_score == pytest.approx(11 / 12, abs=1e-4)


def test_name_match_below_threshold(kycs, kyc):
    outcome = kycs.verify_name_match(kyc.id, "John Doe", "Jane Smith")
    assert not outcome.result.verified
    assert outcome.confidence == "LOW"
    assert not outcome.kyc.name_match_verified
    assert outcome.kyc.verified_name is None


def test_name_match_needs_two_names(kycs, kyc):
    with pytest.raises(ValidationError):
        kycs.verify_name_match(kyc.id)
    kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar")
    with pytest.raises(ValidationError):
        kycs.verify_name_match(kyc.id)


def test_unknown_or_foreign_kyc_session(kycs, kyc, partners):
    other = partners.create_partner("Other Pay", "ops@other.example")
    with pytest.raises(NotFoundError):
        kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar", partner=other)
    with pytest.raises(NotFoundError):
        kycs.get_kyc_session("kyc_missing")


def test_every_check_lands_in_the_compliance_chain(kycs, kyc, storage):
    verify_aadhaar(kycs, kyc)
    kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar")

    actions = [entry.action for entry in ComplianceService.get_trail(storage, kyc.session_id)]
    assert actions == ["KYC_SESSION_CREATED", "AADHAAR_OTP_SENT", "AADHAAR_VERIFICATION", "PAN_VERIFICATION"]
    assert ComplianceService.verify_chain(storage, kyc.session_id)["valid"]
    # Raw identifiers stay out of the trail
    for entry in storage.find(ComplianceLog, session_id=kyc.session_id):
        assert AADHAAR not in str(entry.log_metadata)


def test_verification_data_reports_latest_attempt_per_method(kycs, kyc):
    kycs.verify_upi(kyc.id, "fail@okaxis", "Rahul")
    kycs.verify_upi(kyc.id, "rahul@okaxis", "Rahul")
    data = kycs.verification_data(kycs.get_kyc_session(kyc.id))
    assert set(data) == {"upi"}
    assert data["upi"]["verified"] is True


# ─── Identity documents ──────────────────────────────────────────────

def document_kyc(kycs, partners, document_type, number):
    strict = partners.create_partner("Doc Pay", "kyc@doc.example", required_kyc_methods=["document", "face"])
    doc_session = partners.create_session(strict)
    return kycs.create_kyc_session(doc_session, strict, "user-7", document_type, number)


def test_driving_license_satisfies_document_requirement(kycs, partners, storage):
    kyc = document_kyc(kycs, partners, "driving_license", "GJ14 20110012345")

    outcome = kycs.verify_driving_license(kyc.id, "GJ14-20110012345", "1990-01-01", "rahul kumar")
    assert outcome.result.verified
    assert outcome.kyc.document_verified
    assert outcome.kyc.document_name == "Rahul Kumar"
    assert outcome.kyc.status == "in_progress"

    outcome = kycs.verify_face(kyc.id, "data:image/jpeg;base64,AAAA")
    assert outcome.kyc.status == "completed"
    assert kycs.verified_methods(outcome.kyc) == ["face", "document"]

    [attempt] = storage.verification_attempts(kyc.id, "driving_license")
    assert attempt.verified
    actions = [entry.action for entry in ComplianceService.get_trail(storage, kyc.session_id)]
    assert actions[-2:] == ["DRIVING_LICENSE_VERIFICATION", "FACE_VERIFICATION"]


def test_voter_id_and_passport_checks(kycs, partners):
    voter = document_kyc(kycs, partners, "voter_id", "GUJ0012345")
    assert kycs.verify_voter_id(voter.id, "guj0012345", "Rahul Kumar").kyc.document_verified

    passport = document_kyc(kycs, partners, "passport", "J1234567")
    outcome = kycs.verify_passport(passport.id, "j1234567", "1990-01-01")
    assert outcome.kyc.document_verified
    assert outcome.kyc.document_name == "Sandbox User"


def test_document_check_must_match_declared_type(kycs, kyc):
    with pytest.raises(ValidationError) as exc:
        kycs.verify_passport(kyc.id, "J1234567", "1990-01-01", "Rahul Kumar")
    assert exc.value.details["documentType"] == "pan"
    assert kycs.get_kyc_session(kyc.id).status == "initiated"


def test_repeated_document_rejections_fail_the_session(kycs, partners):
    kyc = document_kyc(kycs, partners, "voter_id", "GUJ0012345")
    for _ in range(3):
        outcome = kycs.verify_voter_id(kyc.id, "GUJ0012345", "Fail Case")
    assert not outcome.kyc.document_verified
    assert outcome.kyc.status == "failed"
    assert outcome.kyc.failure_reason == "voter_id_rejected"


@pytest.mark.parametrize("call", [
    lambda kycs, kyc_id: kycs.verify_driving_license(kyc_id, "GJ14-2011", "1990-01-01"),
    lambda kycs, kyc_id: kycs.verify_driving_license(kyc_id, "GJ1420110012345", "01/01/1990"),
    lambda kycs, kyc_id: kycs.verify_voter_id(kyc_id, "GU0012345", "Rahul Kumar"),
    lambda kycs, kyc_id: kycs.verify_voter_id(kyc_id, "GUJ0012345", ""),
    lambda kycs, kyc_id: kycs.verify_passport(kyc_id, "12345678", "1990-01-01"),
    lambda kycs, kyc_id: kycs.verify_passport(kyc_id, "J1234567", "2999-01-01"),
])
def test_malformed_document_inputs_are_rejected(kycs, kyc, call):
    with pytest.raises(ValidationError):
        call(kycs, kyc.id)
    assert kycs.get_kyc_session(kyc.id).status == "initiated"
