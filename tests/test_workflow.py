"""
Tests for the signing workflow.

Covers the end-to-end behaviour of submit/verify/signed/thank-you/unsubscribe
against a real database session, fakeredis and recorded emails.
"""

from datetime import timedelta

import pytest
from starlette.middleware.sessions import Session

from petitions.core import duplicates, workflow
from petitions.core.exceptions import (
    NotOpenForSigning,
    NotOpenReason,
    RateLimited,
    SignatureNotFound,
    ValidationFailed,
)
from petitions.core.rate_limiter import RateLimitPolicy
from petitions.core.session_store import FormRequest, SignatureSessionStore
from petitions.core.workflow import RequestContext, SubmitOutcome, VerifyStatus
from petitions.models.petition import PetitionState
from petitions.models.signature import Signature, SignatureState


@pytest.fixture
def make_form(signature_params):
    """Raw signing form payload"""
    def _make(**overrides):
        return {**signature_params, **overrides}
    return _make


@pytest.fixture
def sign(db_session, context, store, limiter, policy, make_form):
    """Submit a signature with the default collaborators"""
    def _sign(petition, resolve_aliases=True, **overrides):
        return workflow.submit(
            db_session, petition.id, make_form(**overrides), context, store, limiter, policy,
            resolve_aliases=resolve_aliases
        )
    return _sign


def _signature_count(db_session, petition):
    return db_session.query(Signature).filter(Signature.petition_id == petition.id).count()


class TestRequestForm:
    """Test issuing form tokens"""

    def test_issues_form_token(self, db_session, make_petition, context, store):
        petition = make_petition()

        result = workflow.request_form(db_session, petition.id, context, store)

        assert result.form_request.form_token
        assert store.form_request(petition.id) == result.form_request
        assert result.form_request.form_token in store.cookies_to_set

    def test_sweeps_expired_requests_for_other_petitions(self, db_session, make_petition, context, store, now):
        first = make_petition()
        second = make_petition()
        store.record_form_request(first.id, FormRequest("stale-token", now - timedelta(hours=25)))

        workflow.request_form(db_session, second.id, context, store)

        assert store.form_request(first.id) is None
        assert store.form_request(second.id) is not None
        assert "stale-token" in store.cookies_to_delete

    def test_closed_petition(self, db_session, make_petition, context, store, now):
        petition = make_petition(state=PetitionState.CLOSED, closed_at=now - timedelta(days=3))

        with pytest.raises(NotOpenForSigning) as exc_info:
            workflow.request_form(db_session, petition.id, context, store)

        assert exc_info.value.reason == NotOpenReason.CLOSED

    def test_unknown_petition(self, db_session, context, store):
        with pytest.raises(SignatureNotFound):
            workflow.request_form(db_session, 999, context, store)


class TestSubmit:
    """Test taking signatures"""

    def test_new_signature(self, db_session, make_petition, sign, sent_emails, store):
        petition = make_petition()

        result = sign(petition)

        assert result.outcome == SubmitOutcome.CREATED
        assert result.signature.state == SignatureState.PENDING
        assert result.signature.normalized_email == "ted@example.com"
        assert result.signature.postcode == "SW1A1AA"
        assert result.signature.ip_address == "0.0.0.0"
        assert len(sent_emails) == 1
        assert sent_emails[0]["kind"] == "email_confirmation"
        assert sent_emails[0]["to_email"] == "ted@example.com"
        assert result.signature.perishable_token in sent_emails[0]["context"]["verify_url"]
        assert store.pop_thank_you(petition.id) == result.signature.id

    def test_resubmit_before_verification(self, db_session, make_petition, sign, sent_emails):
        petition = make_petition()
        first = sign(petition)
        token = first.signature.perishable_token

        second = sign(petition, email="TED@example.com")

        assert second.outcome == SubmitOutcome.REDIRECTED
        assert second.signature.id == first.signature.id
        assert second.signature.perishable_token == token
        assert [e["kind"] for e in sent_emails] == ["email_confirmation", "email_confirmation"]
        assert _signature_count(db_session, petition) == 1

    def test_resubmit_with_expired_token_rotates_it(self, db_session, make_petition, make_signature, sign, sent_emails, now):
        petition = make_petition()
        existing = make_signature(petition, issued_at=now - timedelta(days=31))
        old_token = existing.perishable_token

        result = sign(petition)

        assert result.outcome == SubmitOutcome.REDIRECTED
        assert result.signature.perishable_token != old_token
        assert result.signature.perishable_token in sent_emails[0]["context"]["verify_url"]

    def test_resubmit_after_verification(self, db_session, make_petition, make_signature, sign, sent_emails):
        petition = make_petition()
        existing = make_signature(petition, state=SignatureState.VALIDATED)

        result = sign(petition)

        assert result.outcome == SubmitOutcome.REDIRECTED
        assert result.signature.id == existing.id
        assert [e["kind"] for e in sent_emails] == ["duplicate_signature"]

    @pytest.mark.parametrize("state", [SignatureState.INVALIDATED, SignatureState.FRAUDULENT])
    def test_resubmit_after_moderation(self, db_session, make_petition, make_signature, sign, sent_emails, state):
        petition = make_petition()
        existing = make_signature(petition, state=state)

        result = sign(petition)

        assert result.outcome == SubmitOutcome.REDIRECTED
        assert result.signature.id == existing.id
        assert result.signature.state == state
        assert sent_emails == []

    def test_aliases_resolve_to_same_signature(self, db_session, make_petition, sign):
        petition = make_petition()

        first = sign(petition, email="user@example.com")
        second = sign(petition, email="user+tag@example.com")

        assert second.outcome == SubmitOutcome.REDIRECTED
        assert second.signature.id == first.signature.id
        assert _signature_count(db_session, petition) == 1

    def test_aliases_are_distinct_when_resolution_disabled(self, db_session, make_petition, sign):
        petition = make_petition()

        first = sign(petition, resolve_aliases=False, email="user@example.com")
        second = sign(petition, resolve_aliases=False, email="user+tag@example.com")

        assert second.outcome == SubmitOutcome.CREATED
        assert second.signature.id != first.signature.id
        assert _signature_count(db_session, petition) == 2

    def test_records_form_request(self, db_session, make_petition, context, limiter, policy, make_form):
        petition = make_petition()
        store = SignatureSessionStore(session=Session(), cookies={})
        form_request = workflow.request_form(db_session, petition.id, context, store).form_request

        # Next request carries the session and the acknowledgement cookie
        store = SignatureSessionStore(session=store.session, cookies=dict(store.cookies_to_set))
        result = workflow.submit(db_session, petition.id, make_form(), context, store, limiter, policy)

        assert result.signature.form_token == form_request.form_token
        assert result.signature.form_requested_at is not None
        assert result.signature.image_loaded_at is not None
        assert store.form_request(petition.id) is None
        assert form_request.form_token in store.cookies_to_delete

    def test_concurrent_insert_is_recovered(self, db_session, make_petition, make_signature, sign, sent_emails, monkeypatch):
        petition = make_petition()
        existing = make_signature(petition)
        real_resolve = duplicates.resolve
        calls = []

        def racing_resolve(*args, **kwargs):
            # The first lookup misses the row a concurrent request just inserted
            calls.append(args)
            if len(calls) == 1:
                return None
            return real_resolve(*args, **kwargs)

        monkeypatch.setattr(duplicates, "resolve", racing_resolve)

        result = sign(petition)

        assert len(calls) == 2
        assert result.outcome == SubmitOutcome.REDIRECTED
        assert result.signature.id == existing.id
        assert [e["kind"] for e in sent_emails] == ["email_confirmation"]
        assert _signature_count(db_session, petition) == 1


class TestSubmitRefusals:
    """Petitions not open for signing never gain signatures"""

    @pytest.mark.parametrize("state,reason", [
        (PetitionState.PENDING, NotOpenReason.NOT_YET_OPEN),
        (PetitionState.VALIDATED, NotOpenReason.NOT_YET_OPEN),
        (PetitionState.SPONSORED, NotOpenReason.NOT_YET_OPEN),
        (PetitionState.FLAGGED, NotOpenReason.NOT_YET_OPEN),
        (PetitionState.REJECTED, NotOpenReason.REJECTED),
    ])
    def test_not_open(self, db_session, make_petition, sign, sent_emails, state, reason):
        petition = make_petition(state=state)

        with pytest.raises(NotOpenForSigning) as exc_info:
            sign(petition)

        assert exc_info.value.reason == reason
        assert _signature_count(db_session, petition) == 0
        assert sent_emails == []

    def test_recently_closed(self, db_session, make_petition, sign, now):
        petition = make_petition(state=PetitionState.CLOSED, closed_at=now - timedelta(hours=12))

        with pytest.raises(NotOpenForSigning) as exc_info:
            sign(petition)

        assert exc_info.value.reason == NotOpenReason.RECENTLY_CLOSED
        assert _signature_count(db_session, petition) == 0

    @pytest.mark.parametrize("state", [PetitionState.HIDDEN, PetitionState.STOPPED])
    def test_hidden(self, db_session, make_petition, sign, state):
        petition = make_petition(state=state)

        with pytest.raises(SignatureNotFound):
            sign(petition)

    def test_closed_petition_refuses_before_field_errors(self, db_session, make_petition, sign, now):
        petition = make_petition(state=PetitionState.CLOSED, closed_at=now - timedelta(hours=36))

        with pytest.raises(NotOpenForSigning) as exc_info:
            sign(petition, postcode="", email="not-an-email")

        assert exc_info.value.reason == NotOpenReason.CLOSED

    def test_field_errors(self, db_session, make_petition, sign, sent_emails):
        petition = make_petition()

        with pytest.raises(ValidationFailed) as exc_info:
            sign(petition, postcode="")

        assert exc_info.value.errors == {"postcode": ["Postcode must be completed"]}
        assert _signature_count(db_session, petition) == 0
        assert sent_emails == []

    def test_rate_limited(self, db_session, make_petition, context, store, limiter, make_form, sent_emails):
        petition = make_petition()
        policy = RateLimitPolicy(burst_rate=1, burst_period=60, sustained_rate=5, sustained_period=300)

        workflow.submit(db_session, petition.id, make_form(email="one@example.com"), context, store, limiter, policy)

        with pytest.raises(RateLimited) as exc_info:
            workflow.submit(db_session, petition.id, make_form(email="two@example.com"), context, store, limiter, policy)

        assert exc_info.value.reason == "burst"
        assert _signature_count(db_session, petition) == 1
        assert len(sent_emails) == 1

    def test_allow_listed_domain_is_not_limited(self, db_session, make_petition, context, store, limiter, make_form):
        petition = make_petition()
        policy = RateLimitPolicy(burst_rate=10, burst_period=60, sustained_rate=20, sustained_period=300,
                                 allowed_domains=("example.com",))

        for i in range(11):
            result = workflow.submit(
                db_session, petition.id, make_form(email=f"user{i}@example.com"), context, store, limiter, policy
            )
            assert result.outcome == SubmitOutcome.CREATED


class TestVerify:
    """Test confirming signatures"""

    def test_validates_signature(self, db_session, make_petition, make_signature, store, resolver, context, now):
        petition = make_petition()
        signature = make_signature(petition)

        result = workflow.verify(db_session, signature.id, signature.perishable_token, context, store, resolver)

        assert result.status == VerifyStatus.VALIDATED
        assert result.newly_validated
        assert result.signature.state == SignatureState.VALIDATED
        assert store.signed_token(signature.id, now) == result.signature.signed_token

    def test_verify_twice(self, db_session, make_petition, make_signature, store, resolver, context, sent_emails):
        petition = make_petition()
        signature = make_signature(petition)
        token = signature.perishable_token

        first = workflow.verify(db_session, signature.id, token, context, store, resolver)
        second = workflow.verify(db_session, signature.id, token, context, store, resolver)

        assert second.status == VerifyStatus.VALIDATED
        assert not second.newly_validated
        assert second.signature.id == first.signature.id
        assert second.signature.validated_at == first.signature.validated_at
        assert sent_emails == []

        db_session.refresh(petition)
        assert petition.signature_count == 1

    def test_unknown_token(self, db_session, make_petition, make_signature, store, resolver, context):
        signature = make_signature(make_petition())

        with pytest.raises(SignatureNotFound):
            workflow.verify(db_session, signature.id, "not-the-token", context, store, resolver)

    def test_unknown_signature(self, db_session, store, resolver, context):
        with pytest.raises(SignatureNotFound):
            workflow.verify(db_session, 999, "token", context, store, resolver)

    def test_closed_beyond_grace(self, db_session, make_petition, make_signature, store, resolver, context, now):
        petition = make_petition(state=PetitionState.CLOSED, closed_at=now - timedelta(hours=36))
        signature = make_signature(petition)

        with pytest.raises(NotOpenForSigning) as exc_info:
            workflow.verify(db_session, signature.id, signature.perishable_token, context, store, resolver)

        assert exc_info.value.reason == NotOpenReason.CLOSED
        assert exc_info.value.notice == "Sorry, you can't sign petitions that have been closed"

        db_session.refresh(signature)
        assert signature.state == SignatureState.PENDING
        assert signature.validated_at is None

    def test_closed_within_grace(self, db_session, make_petition, make_signature, store, resolver, context, now):
        petition = make_petition(state=PetitionState.CLOSED, closed_at=now - timedelta(hours=12))
        signature = make_signature(petition)

        result = workflow.verify(db_session, signature.id, signature.perishable_token, context, store, resolver)

        assert result.status == VerifyStatus.VALIDATED
        assert result.signature.state == SignatureState.VALIDATED

    def test_moderated_signature(self, db_session, make_petition, make_signature, store, resolver, context):
        signature = make_signature(make_petition(), state=SignatureState.FRAUDULENT)

        result = workflow.verify(db_session, signature.id, signature.perishable_token, context, store, resolver)

        assert result.status == VerifyStatus.ALREADY_HANDLED
        assert result.signature.state == SignatureState.FRAUDULENT
        assert store.signed_token(signature.id, context.now) is None


class TestSigned:
    """Test the one-time confirmation page"""

    def test_shown_once(self, db_session, make_petition, make_signature, store, resolver, context):
        signature = make_signature(make_petition())
        workflow.verify(db_session, signature.id, signature.perishable_token, context, store, resolver)

        first = workflow.signed(db_session, signature.id, context, store)
        second = workflow.signed(db_session, signature.id, context, store)

        assert first.show
        assert first.signature.seen_signed_confirmation_page
        assert not second.show

    def test_other_browser(self, db_session, make_petition, make_signature, store, resolver, context):
        signature = make_signature(make_petition())
        workflow.verify(db_session, signature.id, signature.perishable_token, context, store, resolver)

        other_browser = SignatureSessionStore(session=Session(), cookies={})
        assert not workflow.signed(db_session, signature.id, context, other_browser).show

    def test_stale_session_token(self, db_session, make_petition, make_signature, store, resolver, context, now):
        signature = make_signature(make_petition())
        workflow.verify(db_session, signature.id, signature.perishable_token, context, store, resolver)

        later = RequestContext(ip_address=context.ip_address, now=now + timedelta(hours=2))
        assert not workflow.signed(db_session, signature.id, later, store).show

    def test_pending_signature(self, db_session, make_petition, make_signature, store, context):
        signature = make_signature(make_petition())
        assert not workflow.signed(db_session, signature.id, context, store).show

    @pytest.mark.parametrize("state", [
        PetitionState.PENDING, PetitionState.VALIDATED, PetitionState.SPONSORED, PetitionState.FLAGGED
    ])
    def test_petition_in_moderation(self, db_session, make_petition, make_signature, store, context, state):
        signature = make_signature(make_petition(state=state), state=SignatureState.VALIDATED)
        store.replace_signed_tokens(signature.id, signature.signed_token, context.now)

        with pytest.raises(SignatureNotFound):
            workflow.signed(db_session, signature.id, context, store)

        db_session.refresh(signature)
        assert not signature.seen_signed_confirmation_page


class TestThankYou:
    """Test the page shown after submitting"""

    def test_after_submit(self, db_session, make_petition, sign, store):
        petition = make_petition()
        signature_id = sign(petition).signature.id

        assert workflow.thank_you(db_session, petition.id, store).signature_id == signature_id
        assert workflow.thank_you(db_session, petition.id, store).signature_id is None

    def test_closed_petition(self, db_session, make_petition, store, now):
        petition = make_petition(state=PetitionState.CLOSED, closed_at=now - timedelta(hours=1))

        with pytest.raises(NotOpenForSigning) as exc_info:
            workflow.thank_you(db_session, petition.id, store)

        assert exc_info.value.reason == NotOpenReason.CLOSED


class TestUnsubscribe:
    """Test stopping petition emails"""

    def test_unsubscribe(self, db_session, make_petition, make_signature):
        signature = make_signature(make_petition(), notify_by_email=True)

        signature = workflow.unsubscribe(db_session, signature.id, signature.unsubscribe_token)

        assert not signature.notify_by_email

    def test_wrong_token(self, db_session, make_petition, make_signature):
        signature = make_signature(make_petition(), notify_by_email=True)

        with pytest.raises(SignatureNotFound):
            workflow.unsubscribe(db_session, signature.id, signature.perishable_token)

        db_session.refresh(signature)
        assert signature.notify_by_email

    @pytest.mark.parametrize("state", [
        PetitionState.PENDING, PetitionState.VALIDATED, PetitionState.SPONSORED, PetitionState.FLAGGED
    ])
    def test_petition_in_moderation(self, db_session, make_petition, make_signature, state):
        signature = make_signature(make_petition(state=state), notify_by_email=True)

        with pytest.raises(SignatureNotFound):
            workflow.unsubscribe(db_session, signature.id, signature.unsubscribe_token)

        db_session.refresh(signature)
        assert signature.notify_by_email
