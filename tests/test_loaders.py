import json
import tempfile

import pytest

import data_loaders as loaders
from errors import BackendError, UploadRejected


def _write_csv(text):
    with tempfile.NamedTemporaryFile(mode="w", suffix=".csv", delete=False) as tmp:
        tmp.write(text)
        return tmp.name


def test_load_guests_dataframe_csv_basic():
    path = _write_csv(
        "Guest Name,Card Class,Invite Code,QR Path\n"
        "John Doe,VIP,INV1,qr/inv1.png\n"
        ",Standard,INV2,\n"
        "Jane Roe,Standard,INV1,\n"
        "Sam Poe,,,\n"
    )
    df = loaders.load_guests_dataframe(path)
    assert list(df.columns) == loaders.GUEST_COLUMNS
    assert list(df["Name"]) == ["John Doe", "Sam Poe"]
    assert df.iloc[0]["Card_Class"] == "VIP"
    assert df.iloc[0]["QR_Path"] == "qr/inv1.png"
    assert df.iloc[1]["Title"] == ""
    assert df.attrs["load_stats"] == {
        "source_rows": 4,
        "loaded_rows": 2,
        "skipped_missing_name": 1,
        "dropped_duplicate_invite_code": 1,
    }


def test_guest_records_from_dataframe():
    df = loaders.load_guests_dataframe(_write_csv("Name,Invite Code\nJohn Doe,INV9\nNo Code,\n"))
    records = loaders.guest_records_from_dataframe(df)
    assert records[0]["id"] == "INV9"
    assert records[0]["name"] == "John Doe"
    assert records[1]["id"] == "2"
    assert records[1]["qr_code_base64"] == ""


class _FakeResp:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.headers = {"Content-Type": "application/json"}
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _FakeHttp:
    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self._responses.pop(0)


def _client(http):
    return loaders.CardApiClient(base_url="https://api.example.com/api/", token="t0k", http=http)


def test_client_unwraps_data_envelope():
    http = _FakeHttp(_FakeResp(200, {"data": [{"id": 1, "name": "Alice"}]}))
    guests = _client(http).fetch_guests(5)
    assert guests == [{"id": 1, "name": "Alice"}]
    method, url, kwargs = http.calls[0]
    assert (method, url) == ("GET", "https://api.example.com/api/events/5/guests/all")
    assert kwargs["headers"]["Authorization"] == "Bearer t0k"


def test_client_retries_server_errors(monkeypatch):
    # Avoid sleeps in retry logic
    monkeypatch.setattr(loaders, "_backoff_sleep", lambda attempt: None)
    http = _FakeHttp(_FakeResp(503, text="busy"), _FakeResp(200, {"name_position_x": 40}))
    assert _client(http).fetch_card_type(2) == {"name_position_x": 40}
    assert len(http.calls) == 2


def test_client_raises_backend_error_after_retries(monkeypatch):
    monkeypatch.setattr(loaders, "_backoff_sleep", lambda attempt: None)
    http = _FakeHttp(_FakeResp(500, text="boom"), _FakeResp(500, text="boom"))
    with pytest.raises(BackendError) as exc:
        _client(http).fetch_card_type(2)
    assert exc.value.status_code == 500


def test_client_missing_design_is_none():
    http = _FakeHttp(_FakeResp(404, {"message": "not found"}))
    assert _client(http).fetch_template_image(5) is None


def test_client_upload_rejection_carries_allowed_dimensions():
    http = _FakeHttp(
        _FakeResp(422, {"message": "Image dimensions must be exactly one of: ...", "allowed_dimensions": [[3000, 4200]]})
    )
    with pytest.raises(UploadRejected) as exc:
        _client(http).upload_template(5, b"\x89PNG", "image/png", "card.png")
    assert "3000x4200" in str(exc.value)
    assert exc.value.allowed_dimensions == [(3000, 4200)]
    body = http.calls[0][2]["json"]
    assert body["card_design_base64"].startswith("data:image/png;base64,")


def test_client_save_card_type_sends_payload():
    http = _FakeHttp(_FakeResp(200, {"data": {"id": 2, "qr_position_x": 75}}))
    assert _client(http).save_card_type(2, {"qr_position_x": 75}) == {"id": 2, "qr_position_x": 75}
    method, url, kwargs = http.calls[0]
    assert method == "PUT"
    assert kwargs["json"] == {"qr_position_x": 75}


def test_local_backend_generates_missing_qr(tmp_path):
    guests = tmp_path / "guests.csv"
    guests.write_text("Name,Invite Code,QR Base64\nAlice,INV1,\nBob,,\n", encoding="utf-8")
    backend = loaders.LocalCardBackend(None, str(guests), generate_missing_qr=True)
    records = backend.fetch_guests(None)
    assert records[0]["qr_code_base64"].startswith("data:image/png;base64,")
    assert records[1]["qr_code_base64"] == ""
    assert backend.fetch_template_image(None) is None
    assert backend.fetch_card_type(None) == {}


def test_local_backend_save_merges_card_type(tmp_path):
    card_type = tmp_path / "card_type.json"
    card_type.write_text(json.dumps({"name": "Gala", "qr_position_x": 80}), encoding="utf-8")
    backend = loaders.LocalCardBackend(None, "unused.csv", str(card_type))
    saved = backend.save_card_type(1, {"qr_position_x": 60, "show_card_class": False})
    assert saved == {"name": "Gala", "qr_position_x": 60, "show_card_class": False}
    assert json.loads(card_type.read_text(encoding="utf-8")) == saved


def test_local_backend_without_card_type_file_cannot_save():
    backend = loaders.LocalCardBackend(None, "unused.csv")
    with pytest.raises(BackendError):
        backend.save_card_type(1, {})
