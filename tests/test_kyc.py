import pytest
from sqlmodel import Session, select

from brokerage.exceptions import AlreadyProcessedError, ConflictError, ValidationError
from brokerage.webapp import mailer
from brokerage.webapp.kyc import display_status, get_user_kyc, kyc_stats, list_kyc, review_kyc, submit_kyc
from brokerage.webapp.persistence import KYC, engine

FRONT = "https://img.example.com/front.jpg"
BACK = "https://img.example.com/back.jpg"
SELFIE = "https://img.example.com/selfie.jpg"


def _submit(session, user_id, **overrides):
    params = {"document_type": "DRIVERS_LICENSE", "front_url": FRONT, "back_url": BACK, "selfie_url": SELFIE}
    params.update(overrides)
    return submit_kyc(session, user_id, **params)


def test_submit_creates_pending_application(session, make_user):
    user = make_user()
    kyc = _submit(session, user.id)
    assert kyc.status == "PENDING"
    assert kyc.document_back_url == BACK
    assert display_status(get_user_kyc(session, user.id)) == "pending"
    assert mailer.email_client.deliveries()[-1]["To"] == "jane@example.com"


def test_passport_does_not_need_a_back_image(session, make_user):
    user = make_user()
    kyc = _submit(session, user.id, document_type="passport", back_url=None)
    assert kyc.document_back_url is None


def test_other_documents_need_a_back_image(session, make_user):
    user = make_user()
    with pytest.raises(ValidationError, match="back image"):
        _submit(session, user.id, back_url="")


def test_selfie_is_required(session, make_user):
    user = make_user()
    with pytest.raises(ValidationError, match="Selfie"):
        _submit(session, user.id, selfie_url="")


def test_pending_application_blocks_another(session, make_user):
    user = make_user()
    _submit(session, user.id)
    with pytest.raises(ConflictError, match="pending KYC application"):
        _submit(session, user.id)


def test_approve(session, make_user, actor):
    user = make_user()
    kyc = _submit(session, user.id)
    reviewed = review_kyc(session, actor, kyc.id, "APPROVED")
    assert reviewed.status == "APPROVED"
    assert reviewed.reviewed_by_id == actor.id
    assert display_status(reviewed) == "verified"
    with pytest.raises(ConflictError, match="already been approved"):
        _submit(session, user.id)
    with pytest.raises(AlreadyProcessedError):
        review_kyc(session, actor, kyc.id, "DECLINED", "Too late")


def test_decline_needs_reason_then_allows_resubmission(session, make_user, actor):
    user = make_user()
    kyc = _submit(session, user.id)
    with pytest.raises(ValidationError, match="reason"):
        review_kyc(session, actor, kyc.id, "DECLINED")
    declined = review_kyc(session, actor, kyc.id, "DECLINED", "Blurry photo")
    assert declined.rejection_reason == "Blurry photo"

    replacement = _submit(session, user.id, document_type="PASSPORT", back_url=None)
    assert replacement.status == "PENDING"
    with Session(engine) as check:
        rows = check.exec(select(KYC)).all()
    assert len(rows) == 1


def test_listing_and_stats(session, make_user, actor):
    first = make_user("a@example.com")
    second = make_user("b@example.com")
    kyc = _submit(session, first.id)
    _submit(session, second.id)
    review_kyc(session, actor, kyc.id, "APPROVED")

    pending = list_kyc(session, status="pending")
    assert pending.total == 1
    assert pending.items[0][1].email == "b@example.com"
    assert kyc_stats(session) == {"pending": 1, "approved": 1, "declined": 0, "total": 2}
