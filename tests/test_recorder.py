import asyncio

import pytest
import pytest_asyncio

from app.modules.leads import store
from app.modules.leads.contacts import resolve_contact
from app.modules.leads.errors import PersistenceError
from app.modules.leads.recorder import record_lead

QUIZ_ANSWERS = {
    "ageRange": "65-70",
    "retirementSavings": 250000,
    "allocationPercent": {"percentage": 40, "amount": 100000},
    "currentRetirementPlans": ["401k", "IRA"],
    "addressInfo": {"city": "Tampa", "stateAbbr": "FL", "zipCode": "33601"},
}

UTM = {"utm_source": "facebook", "utm_medium": "cpc", "utm_campaign": "rmd-fall", "utm_term": "annuity"}


@pytest_asyncio.fixture
async def contact(memory_store):
    return await resolve_contact("jane@x.com", "Jane", "Doe", "5551234567")


@pytest.mark.asyncio
async def test_records_verified_lead_with_answers_and_attribution(memory_store, settings, contact):
    lead = await record_lead(
        contact.id, "sess-1", QUIZ_ANSWERS, UTM, "https://cert.trustedform.com/abc",
        funnel_type="annuity-quote", contact=contact,
    )

    assert lead.contact_id == contact.id
    assert lead.session_id == "sess-1"
    assert lead.site_key == settings.site_key
    assert lead.funnel_type == "annuity-quote"
    assert lead.status == "verified"
    assert lead.is_verified is True
    assert lead.verified_at is not None
    assert (lead.utm_source, lead.utm_medium, lead.utm_campaign) == ("facebook", "cpc", "rmd-fall")
    assert lead.trustedform_cert_url == "https://cert.trustedform.com/abc"
    assert lead.contact == {"email": "jane@x.com", "phone": "+15551234567", "first_name": "Jane", "last_name": "Doe"}


@pytest.mark.asyncio
async def test_quiz_answers_round_trip_with_attribution_sub_object(memory_store, contact):
    lead = await record_lead(contact.id, "sess-1", QUIZ_ANSWERS, UTM, "https://cert.trustedform.com/abc")

    stored = memory_store.leads[lead.id]["quiz_answers"]
    for key, value in QUIZ_ANSWERS.items():
        assert stored[key] == value
    assert stored["utm_parameters"] == UTM
    assert stored["trusted_form_cert_url"] == "https://cert.trustedform.com/abc"


@pytest.mark.asyncio
async def test_defaults_funnel_type(memory_store, settings, contact):
    lead = await record_lead(contact.id, "sess-1", {}, None, None)

    assert lead.funnel_type == settings.default_funnel_type
    assert lead.quiz_answers["utm_parameters"] == {}
    assert lead.quiz_answers["trusted_form_cert_url"] is None


@pytest.mark.asyncio
async def test_same_session_updates_existing_lead(memory_store, contact):
    first = await record_lead(contact.id, "sess-1", {"ageRange": "65-70"}, UTM, None)
    second = await record_lead(contact.id, "sess-1", {"riskTolerance": "low", "ageRange": "70-75"}, UTM, None)

    assert second.id == first.id
    assert len(memory_store.leads) == 1
    assert second.quiz_answers["ageRange"] == "70-75"
    assert second.quiz_answers["riskTolerance"] == "low"


@pytest.mark.asyncio
async def test_new_session_creates_new_lead(memory_store, contact):
    first = await record_lead(contact.id, "sess-1", {}, None, None)
    second = await record_lead(contact.id, "sess-2", {}, None, None)

    assert first.id != second.id
    assert len(memory_store.leads) == 2


@pytest.mark.asyncio
async def test_without_session_every_submission_is_a_new_lead(memory_store, contact):
    await record_lead(contact.id, None, {}, None, None)
    await record_lead(contact.id, None, {}, None, None)

    assert len(memory_store.leads) == 2


@pytest.mark.asyncio
async def test_backfills_attribution_from_session_events(memory_store, contact):
    await memory_store.insert_analytics_event({
        "event_name": "quiz_step_viewed",
        "session_id": "sess-1",
        "user_id": "visitor-42",
        "referrer": "https://www.google.com/",
        "page_url": "https://www.seniorsimple.org/quiz-rmd",
    })

    lead = await record_lead(contact.id, "sess-1", {}, UTM, None)

    assert lead.referrer == "https://www.google.com/"
    assert lead.landing_page == "https://www.seniorsimple.org/quiz-rmd"
    assert lead.user_id == "visitor-42"


@pytest.mark.asyncio
async def test_directly_supplied_attribution_wins(memory_store, contact):
    await memory_store.insert_analytics_event({
        "event_name": "page_view",
        "session_id": "sess-1",
        "referrer": "https://www.google.com/",
        "page_url": "https://www.seniorsimple.org/quiz",
    })

    lead = await record_lead(contact.id, "sess-1", {}, {**UTM, "referrer": "https://news.example.com/"}, None)

    assert lead.referrer == "https://news.example.com/"
    assert lead.landing_page == "https://www.seniorsimple.org/quiz"


@pytest.mark.asyncio
async def test_attribution_lookup_failure_is_ignored(memory_store, monkeypatch, contact):
    async def unavailable(session_id):
        raise OSError("connection reset")

    monkeypatch.setattr(store, "latest_session_event", unavailable)

    lead = await record_lead(contact.id, "sess-1", {"ageRange": "65-70"}, None, None)

    assert lead.referrer is None
    assert len(memory_store.leads) == 1


@pytest.mark.asyncio
async def test_write_failure_raises_persistence_error(memory_store, monkeypatch, contact):
    async def failing_insert(data):
        raise ConnectionRefusedError("database unavailable")

    monkeypatch.setattr(store, "insert_lead", failing_insert)

    with pytest.raises(PersistenceError):
        await record_lead(contact.id, "sess-1", {}, None, None)


@pytest.mark.asyncio
async def test_concurrent_same_session_submissions_share_one_lead(memory_store, contact):
    first, second = await asyncio.gather(
        record_lead(contact.id, "sess-1", {"ageRange": "65-70"}, UTM, None),
        record_lead(contact.id, "sess-1", {"riskTolerance": "low"}, UTM, None),
    )

    assert first.id == second.id
    assert len(memory_store.leads) == 1
    [stored] = memory_store.leads.values()
    assert stored["quiz_answers"]["ageRange"] == "65-70"
    assert stored["quiz_answers"]["riskTolerance"] == "low"


@pytest.mark.asyncio
async def test_records_location_and_calculated_results(memory_store, contact):
    lead = await record_lead(
        contact.id, "sess-1", {"ageRange": "65-70"}, UTM, None,
        location={"zip_code": "85001", "state": "AZ", "state_name": "Arizona"},
        calculated_results={"projected_monthly_income_min": 700},
        licensing_info={"licensed": True},
    )

    assert (lead.zip_code, lead.state, lead.state_name) == ("85001", "AZ", "Arizona")
    assert lead.quiz_answers["calculated_results"] == {"projected_monthly_income_min": 700}
    assert lead.quiz_answers["licensing_info"] == {"licensed": True}

    again = await record_lead(contact.id, "sess-1", {"riskTolerance": "low"}, UTM, None)

    assert again.zip_code == "85001"
    assert again.quiz_answers["calculated_results"] == {"projected_monthly_income_min": 700}
