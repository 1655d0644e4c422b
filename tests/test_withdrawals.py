import pytest
from sqlmodel import Session, select

from brokerage.exceptions import (
    InsufficientFundsError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
    WithdrawalHoldError,
    parse_withdrawal_hold,
)
from brokerage.webapp.persistence import AppSettings, Transaction, User, engine
from brokerage.webapp.withdrawals import (
    DEFAULT_SIGNAL_FEE_INSTRUCTION,
    KYC_REQUIRED_MESSAGE,
    SUSPENDED_MESSAGE,
    check_withdrawal_eligibility,
    refund_withdrawal,
    request_withdrawal,
    set_transaction_pin,
    verify_transaction_pin,
)

BTC_DETAILS = {"walletAddress": "bc1qexampleaddress0001"}


def _withdraw(session, user, **overrides):
    params = {
        "balance_type": "FIAT",
        "amount": "100",
        "method": "BITCOIN",
        "details": BTC_DETAILS,
        "pin": "1234",
    }
    params.update(overrides)
    return request_withdrawal(session, user.id, **params)


def _balance(user_id: int) -> int:
    with Session(engine) as session:
        return session.get(User, user_id).fiat_balance_cents


def test_withdrawal_holds_funds_and_stays_pending(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234")
    tx = _withdraw(session, user)
    assert tx.status == "PENDING"
    assert tx.reference.startswith("WD-")
    assert tx.withdrawal_method == "BITCOIN"
    assert tx.details() == BTC_DETAILS
    assert _balance(user.id) == 40_000


def test_btc_withdrawal_uses_btc_balance(session, make_user):
    user = make_user(kyc_approved=True, btc_balance_sats=10_000_000, transaction_pin="1234")
    tx = _withdraw(session, user, balance_type="BTC", amount="0.025")
    assert tx.asset == "BTC"
    assert tx.amount_minor == 2_500_000
    with Session(engine) as check:
        assert check.get(User, user.id).btc_balance_sats == 7_500_000


def test_kyc_is_required(session, make_user):
    user = make_user(fiat_balance_cents=50_000, transaction_pin="1234")
    with pytest.raises(PermissionDenied) as excinfo:
        _withdraw(session, user)
    assert excinfo.value.message == KYC_REQUIRED_MESSAGE


def test_blocked_account_cannot_withdraw(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234", is_blocked=True)
    with pytest.raises(PermissionDenied, match="blocked"):
        _withdraw(session, user)



def test_suspended_account_cannot_withdraw(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234", is_suspended=True)
    with pytest.raises(PermissionDenied) as excinfo:
        _withdraw(session, user)
    assert excinfo.value.message == SUSPENDED_MESSAGE == "Your account is suspended. Please contact support."
    assert _balance(user.id) == 50_000

def test_insufficient_balance(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=5_000, transaction_pin="1234")
    with pytest.raises(InsufficientFundsError, match="Insufficient fiat balance"):
        _withdraw(session, user)


def test_wrong_pin_is_rejected(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234")
    with pytest.raises(ValidationError, match="Invalid PIN"):
        _withdraw(session, user, pin="9999")
    assert _balance(user.id) == 50_000


def test_missing_pin_setup(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000)
    with pytest.raises(ValidationError, match="set up your transaction PIN"):
        _withdraw(session, user)


def test_wallet_address_is_validated(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234")
    with pytest.raises(ValidationError, match="wallet address"):
        _withdraw(session, user, details={"walletAddress": "short"})


def test_bank_transfer_requires_account_fields(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234")
    with pytest.raises(ValidationError, match="Bank name"):
        _withdraw(session, user, method="BANK_TRANSFER", details={"accountName": "Jane Doe"})


def test_fee_hold_comes_first_and_keeps_balance(session, make_user):
    user = make_user(
        kyc_approved=True,
        fiat_balance_cents=50_000,
        transaction_pin="1234",
        withdrawal_fee_cents=2_500,
        withdrawal_fee_instruction="Send the fee to the desk",
        signal_fee_enabled=True,
    )
    with pytest.raises(WithdrawalHoldError) as excinfo:
        _withdraw(session, user)
    error = excinfo.value
    assert error.status_code == 402
    assert error.message == "WITHDRAWAL_FEE_REQUIRED:25.00:Send the fee to the desk"
    assert parse_withdrawal_hold(error.message) == {
        "kind": "WITHDRAWAL_FEE_REQUIRED",
        "fee": "25.00",
        "instruction": "Send the fee to the desk",
    }
    assert _balance(user.id) == 50_000



def test_signal_fee_hold_on_its_own(session, make_user):
    user = make_user(
        kyc_approved=True,
        fiat_balance_cents=50_000,
        transaction_pin="1234",
        signal_fee_enabled=True,
        signal_fee_instruction="Pay the signal desk",
    )
    with pytest.raises(WithdrawalHoldError) as excinfo:
        _withdraw(session, user)
    assert excinfo.value.message == "SIGNAL_FEE_REQUIRED:Pay the signal desk"
    assert parse_withdrawal_hold(excinfo.value.message) == {
        "kind": "SIGNAL_FEE_REQUIRED",
        "instruction": "Pay the signal desk",
    }
    assert _balance(user.id) == 50_000
    with Session(engine) as check:
        assert check.exec(select(Transaction)).all() == []


def test_signal_fee_hold_uses_default_instruction(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234", signal_fee_enabled=True)
    with pytest.raises(WithdrawalHoldError) as excinfo:
        _withdraw(session, user)
    assert excinfo.value.message == f"SIGNAL_FEE_REQUIRED:{DEFAULT_SIGNAL_FEE_INSTRUCTION}"

def test_fee_instruction_falls_back_to_site_default(session, make_user):
    with Session(engine) as setup:
        setup.add(AppSettings(default_withdrawal_instruction="Pay the processing fee first"))
        setup.commit()
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234", withdrawal_fee_cents=100)
    with pytest.raises(WithdrawalHoldError) as excinfo:
        _withdraw(session, user)
    assert excinfo.value.instruction == "Pay the processing fee first"


def test_tier_hold(session, make_user):
    user = make_user(
        kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234", tier=2, tier_upgrade_enabled=True
    )
    with pytest.raises(WithdrawalHoldError) as excinfo:
        _withdraw(session, user)
    assert excinfo.value.kind == WithdrawalHoldError.TIER_UPGRADE
    assert "Tier 2" in excinfo.value.instruction
    assert parse_withdrawal_hold(excinfo.value.message)["tier"] == "2"


def test_eligibility_summary(session, make_user):
    user = make_user(fiat_balance_cents=1_000, signal_fee_enabled=True)
    eligibility = check_withdrawal_eligibility(session, user.id)
    assert eligibility.eligible is False
    assert eligibility.reason == KYC_REQUIRED_MESSAGE
    assert eligibility.kyc_status == "NOT_SUBMITTED"
    assert eligibility.has_pin is False
    assert eligibility.signal_fee_enabled is True
    assert eligibility.signal_fee_instruction


def test_refund_withdrawal(session, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=50_000, transaction_pin="1234")
    tx = _withdraw(session, user)
    refunded = refund_withdrawal(session, tx.id)
    assert refunded.status == "DECLINED"
    assert _balance(user.id) == 50_000
    with pytest.raises(NotFoundError):
        refund_withdrawal(session, tx.id)


def test_refund_only_applies_to_withdrawals(session, make_user):
    user = make_user()
    with Session(engine) as setup:
        deposit = Transaction(user_id=user.id, type="DEPOSIT", amount_minor=100, reference="DEP-1")
        setup.add(deposit)
        setup.commit()
        setup.refresh(deposit)
    with pytest.raises(NotFoundError):
        refund_withdrawal(session, deposit.id)


def test_set_and_verify_transaction_pin(session, make_user):
    user = make_user()
    assert verify_transaction_pin(session, user.id, "1234") is False
    with pytest.raises(ValidationError, match="exactly 4 digits"):
        set_transaction_pin(session, user.id, "12a4")
    set_transaction_pin(session, user.id, " 9876 ")
    assert verify_transaction_pin(session, user.id, "9876") is True
    assert verify_transaction_pin(session, user.id, "1234") is False
