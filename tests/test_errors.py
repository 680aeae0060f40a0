from fastapi.testclient import TestClient
from otpauth.main import app
from otpauth.core.config import settings
from otpauth.core.exceptions import CredentialMintError, IdentityNotFoundError
from pydantic import BaseModel

client = TestClient(app)


class Item(BaseModel):
    name: str
    price: int


@app.post("/test-validation")
def create_item(item: Item):
    return item


@app.get("/test-custom-error")
def trigger_custom_error():
    raise IdentityNotFoundError(message="Identity not found")


@app.get("/test-fatal-error")
def trigger_fatal_error():
    raise CredentialMintError(details="JWT_SECRET is not configured")


@app.get("/test-crash")
def trigger_crash():
    raise RuntimeError("database exploded")


def test_404_not_found():
    response = client.get("/non-existent-route")
    assert response.status_code == 404
    data = response.json()
    assert data["success"] is False
    assert "error" in data
    assert data["errorKind"] == "HTTP_ERROR"


def test_validation_error_structure():
    response = client.post("/test-validation", json={"name": "foo", "price": "invalid"})
    assert response.status_code == 422
    data = response.json()
    assert data["errorKind"] == "VALIDATION_ERROR"
    assert "details" in data
    assert len(data["details"]) > 0


def test_custom_exception():
    response = client.get("/test-custom-error")
    assert response.status_code == 404
    data = response.json()
    assert data["errorKind"] == "NOT_FOUND"
    assert data["error"] == "Identity not found"


def test_fatal_error_hides_operator_details():
    response = client.get("/test-fatal-error")
    assert response.status_code == 500
    data = response.json()
    assert data["errorKind"] == "CREDENTIAL_MINT_FAILED"
    assert "JWT_SECRET" not in data["error"]
    assert data["details"] is None


def test_unhandled_exception():
    crash_client = TestClient(app, raise_server_exceptions=False)
    response = crash_client.get("/test-crash")
    assert response.status_code == 500
    assert response.json()["errorKind"] == "INTERNAL_ERROR"


def test_missing_container_is_a_configuration_error():
    app.state.container = None
    bare_client = TestClient(app, raise_server_exceptions=False)

    response = bare_client.post(f"{settings.API_PREFIX}/auth/send-code", json={"phoneNumber": "+15551234567"})

    assert response.status_code == 500
    data = response.json()
    assert data["errorKind"] == "CONFIGURATION_ERROR"
    assert "lifespan" not in data["error"]
    assert data["details"] is None
