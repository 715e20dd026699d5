import hashlib
import hmac
from unittest import mock

import pytest
import requests

import paystack
from errors import ConfigurationError, ExternalServiceError, InvalidRequestError
from paystack import PaystackClient, generate_reference, order_id_from_reference, verify_signature


def fake_response(body, status_code=200):
    response = mock.Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body
    return response


@pytest.fixture
def client():
    return PaystackClient(secret_key="sk_test_123", base_url="https://api.paystack.test")


def test_reference_round_trip():
    reference = generate_reference("65f1a2b3c4d5e6f708192a3b", now_ms=1717228800000)
    assert reference == "GAB_65f1a2b3c4d5e6f708192a3b_1717228800000"
    assert order_id_from_reference(reference) == "65f1a2b3c4d5e6f708192a3b"


@pytest.mark.parametrize("reference", [None, "", "T123456", "GAB_only"])
def test_foreign_references_have_no_order(reference):
    assert order_id_from_reference(reference) is None


def test_signature():
    body = b'{"event":"charge.success"}'
    signature = hmac.new(b"sk_test_123", body, hashlib.sha512).hexdigest()
    assert verify_signature(body, signature, "sk_test_123")
    assert not verify_signature(body, signature, "sk_other")
    assert not verify_signature(body, None, "sk_test_123")


def test_initialize_transaction(client):
    body = {"status": True, "data": {"authorization_url": "https://checkout.paystack.com/abc", "access_code": "abc", "reference": "GAB_1_2"}}
    with mock.patch.object(paystack.requests, "request", return_value=fake_response(body)) as request:
        result = client.initialize_transaction("ada@example.com", 300000, "GAB_1_2", callback_url="https://app.example.com/cb", metadata={"order_id": "1"})

    assert result == {"authorization_url": "https://checkout.paystack.com/abc", "access_code": "abc", "reference": "GAB_1_2"}
    kwargs = request.call_args.kwargs
    assert kwargs["method"] == "POST"
    assert kwargs["url"] == "https://api.paystack.test/transaction/initialize"
    assert kwargs["headers"]["Authorization"] == "Bearer sk_test_123"
    assert kwargs["json"]["amount"] == 300000
    assert kwargs["json"]["currency"] == "NGN"
    assert kwargs["json"]["metadata"] == {"order_id": "1"}


def test_verify_transaction_returns_data(client):
    body = {"status": True, "data": {"status": "success", "amount": 300000, "reference": "GAB_1_2"}}
    with mock.patch.object(paystack.requests, "request", return_value=fake_response(body)) as request:
        data = client.verify_transaction("GAB_1_2")
    assert data["status"] == "success"
    assert request.call_args.kwargs["url"].endswith("/transaction/verify/GAB_1_2")


def test_gateway_error_message_is_surfaced(client):
    body = {"status": False, "message": "Transaction reference not found"}
    with mock.patch.object(paystack.requests, "request", return_value=fake_response(body, 400)):
        with pytest.raises(ExternalServiceError, match="Transaction reference not found"):
            client.verify_transaction("nope")


def test_network_failure(client):
    with mock.patch.object(paystack.requests, "request", side_effect=requests.ConnectionError("timed out")):
        with pytest.raises(ExternalServiceError, match="unreachable"):
            client.verify_transaction("GAB_1_2")


def test_missing_secret_key():
    with pytest.raises(ConfigurationError, match="Payment service not configured"):
        PaystackClient(secret_key="").verify_transaction("GAB_1_2")


@pytest.mark.parametrize("reference", ["x/../../bank", "GAB_1_2?perPage=100", "a b", ""])
def test_unsafe_references_never_reach_the_gateway(client, reference):
    with mock.patch.object(paystack.requests, "request") as request:
        with pytest.raises(InvalidRequestError, match="Invalid payment reference"):
            client.verify_transaction(reference)
    request.assert_not_called()


def test_non_object_verify_data_is_a_gateway_error(client):
    body = {"status": True, "data": [{"name": "Access Bank"}]}
    with mock.patch.object(paystack.requests, "request", return_value=fake_response(body)):
        with pytest.raises(ExternalServiceError, match="Unexpected response"):
            client.verify_transaction("GAB_1_2")
