from unittest.mock import patch

import pytest
import stripe

import partner_backend.config as config
from partner_backend.jobs.tasks import CheckoutAffiliateTask

WEBHOOK_URL = "/api/v1/webhooks/stripe"
SIGNED = {"stripe-signature": "t=1,v1=abc"}


@pytest.fixture()
def webhook_secret(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "whsec_test")


def checkout_event(email="buyer@example.com", name="Grace Hopper", session_id="cs_test_1"):
    return {
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "customer_details": {"email": email, "name": name}}},
    }


def test_webhook_unconfigured_returns_503(client):
    resp = client.post(WEBHOOK_URL, content=b"{}", headers=SIGNED)
    assert resp.status_code == 503


def test_missing_signature_is_bad_request(client, webhook_secret):
    assert client.post(WEBHOOK_URL, content=b"{}").status_code == 400


def test_invalid_signature_is_unauthorized(client, webhook_secret, task_queue):
    error = stripe.SignatureVerificationError("No signatures found matching the expected signature", "t=1,v1=abc")
    with patch("stripe.Webhook.construct_event", side_effect=error):
        resp = client.post(WEBHOOK_URL, content=b"{}", headers=SIGNED)
    assert resp.status_code == 401
    assert task_queue.depth() == 0


def test_malformed_payload_is_bad_request(client, webhook_secret):
    with patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")):
        resp = client.post(WEBHOOK_URL, content=b"not json", headers=SIGNED)
    assert resp.status_code == 400


def test_checkout_completed_queues_affiliate_task(client, webhook_secret, task_queue):
    with patch("stripe.Webhook.construct_event", return_value=checkout_event()) as construct:
        resp = client.post(WEBHOOK_URL, content=b'{"id": "evt_1"}', headers=SIGNED)

    assert resp.status_code == 200
    assert resp.json()["message"] == "queued"
    payload, signature, secret = construct.call_args.args
    assert payload == b'{"id": "evt_1"}'
    assert signature == "t=1,v1=abc"
    assert secret == "whsec_test"

    task = task_queue.dequeue(block=False)
    assert isinstance(task, CheckoutAffiliateTask)
    assert task.email == "buyer@example.com"
    assert task.name == "Grace Hopper"
    assert task.checkout_session_id == "cs_test_1"


def test_customer_email_fallback(client, webhook_secret, task_queue):
    event = {"type": "checkout.session.completed", "data": {"object": {"id": "cs_2", "customer_email": "alt@example.com"}}}
    with patch("stripe.Webhook.construct_event", return_value=event):
        client.post(WEBHOOK_URL, content=b"{}", headers=SIGNED)
    assert task_queue.dequeue(block=False).email == "alt@example.com"


def test_other_events_are_ignored(client, webhook_secret, task_queue):
    event = {"type": "invoice.paid", "data": {"object": {}}}
    with patch("stripe.Webhook.construct_event", return_value=event):
        resp = client.post(WEBHOOK_URL, content=b"{}", headers=SIGNED)
    assert resp.status_code == 200
    assert resp.json()["message"] == "ignored"
    assert task_queue.depth() == 0


def test_checkout_without_email_is_ignored(client, webhook_secret, task_queue):
    with patch("stripe.Webhook.construct_event", return_value=checkout_event(email=None)):
        resp = client.post(WEBHOOK_URL, content=b"{}", headers=SIGNED)
    assert resp.json()["message"] == "ignored"
    assert task_queue.depth() == 0
