import io
import json
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import CONTACT, FakeLLM, FakeRecordStore, media_event, seed_session
from graph.flow import FlowController
from graph.sessions import SessionStore
from graph.state import FlowStep
from tools.errors import IntegrationError, ResourceError
from tools.monday import MondayClient
from tools.whatsapp import WhatsAppGateway


def form_of(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestWhatsAppGateway:

    @pytest.fixture(autouse=True)
    def twilio_env(self, monkeypatch):
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "secret")
        monkeypatch.setenv("TWILIO_PHONE_NUMBER", "+14155238886")
        monkeypatch.delenv("TWILIO_API_BASE", raising=False)
        self.requests = []

    def gateway(self, handler) -> WhatsAppGateway:
        def recording(request):
            self.requests.append(request)
            return handler(request)
        return WhatsAppGateway(transport=httpx.MockTransport(recording))

    @pytest.mark.asyncio
    async def test_send_text(self):
        gateway = self.gateway(lambda request: httpx.Response(201, json={"sid": "SM42"}))

        sid = await gateway.send_text("whatsapp:+56911112222", "Hola")

        assert sid == "SM42"
        request = self.requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["authorization"].startswith("Basic ")
        assert form_of(request) == {
            "To": "whatsapp:+56911112222",
            "From": "whatsapp:+14155238886",
            "Body": "Hola",
        }

    @pytest.mark.asyncio
    async def test_send_template(self):
        gateway = self.gateway(lambda request: httpx.Response(201, json={"sid": "SM43"}))

        await gateway.send_template("whatsapp:+56911112222", "HXabc", {"1": "Jane"})

        form = form_of(self.requests[0])
        assert form["ContentSid"] == "HXabc"
        assert json.loads(form["ContentVariables"]) == {"1": "Jane"}
        assert "Body" not in form

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        gateway = self.gateway(lambda request: httpx.Response(500, text="upstream down"))

        with pytest.raises(IntegrationError) as exc_info:
            await gateway.send_text("whatsapp:+56911112222", "Hola")

        assert exc_info.value.status_code == 500
        assert exc_info.value.service == "twilio"

    @pytest.mark.asyncio
    async def test_non_json_success_raises(self):
        gateway = self.gateway(lambda request: httpx.Response(
            200, text="<html>proxy page</html>", headers={"content-type": "text/html"}
        ))

        with pytest.raises(IntegrationError):
            await gateway.send_text("whatsapp:+56911112222", "Hola")

    @pytest.mark.asyncio
    async def test_unreadable_ack_still_counts_documents(self):
        """Acks that fail to decode must not discard uploads already made."""
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, content=b"%PDF-1.4 liquidacion")
            return httpx.Response(200, text="<html>ok</html>", headers={"content-type": "text/html"})

        store, records = SessionStore(), FakeRecordStore()
        controller = FlowController(store=store, gateway=self.gateway(handler), records=records, llm=FakeLLM())
        seed_session(store, FlowStep.COLLECT_DOCS, linked_record_id="item-1",
                     answers={"worker_category": "independiente"})

        await controller.handle_chat_event(media_event(2))

        assert len(records.files) == 2
        assert store.get(CONTACT).received_document_count == 2

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def broken(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(IntegrationError):
            await self.gateway(broken).send_text("whatsapp:+56911112222", "Hola")

    @pytest.mark.asyncio
    async def test_download_follows_redirect(self):
        def handler(request):
            if request.url.host == "api.twilio.com":
                return httpx.Response(307, headers={"location": "https://media.example.com/file"})
            return httpx.Response(200, content=b"%PDF-1.4 cedula")

        sink = io.BytesIO()
        written = await self.gateway(handler).download_media("https://api.twilio.com/media/ME1", sink)

        assert written == len(b"%PDF-1.4 cedula")
        assert sink.getvalue() == b"%PDF-1.4 cedula"

    @pytest.mark.asyncio
    async def test_download_not_found(self):
        gateway = self.gateway(lambda request: httpx.Response(404))

        with pytest.raises(ResourceError):
            await gateway.download_media("https://api.twilio.com/media/ME1", io.BytesIO())

    @pytest.mark.asyncio
    async def test_mock_mode(self, monkeypatch):
        monkeypatch.delenv("TWILIO_ACCOUNT_SID")
        gateway = WhatsAppGateway()

        assert not gateway.enabled
        assert await gateway.send_text("whatsapp:+56911112222", "Hola") == "mock_text_sid"
        with pytest.raises(ResourceError):
            await gateway.download_media("https://api.twilio.com/media/ME1", io.BytesIO())


class TestMondayClient:

    @pytest.fixture(autouse=True)
    def monday_env(self, monkeypatch):
        monkeypatch.setenv("MONDAY_API_KEY", "token")
        monkeypatch.setenv("MONDAY_BOARD_ID", "987")
        for name in ("MONDAY_IDENTIFIER_COLUMN", "MONDAY_PHONE_COLUMN", "MONDAY_FILES_COLUMN", "MONDAY_API_URL"):
            monkeypatch.delenv(name, raising=False)
        self.requests = []

    def client(self, handler) -> MondayClient:
        def recording(request):
            self.requests.append(request)
            return handler(request)
        return MondayClient(transport=httpx.MockTransport(recording))

    @staticmethod
    def item(item_id, name, rut, phone):
        return {"id": item_id, "name": name, "column_values": [
            {"id": "rut", "text": rut},
            {"id": "telefono", "text": phone},
        ]}

    @pytest.mark.asyncio
    async def test_find_by_identifier(self):
        items = [
            self.item("1", "Otro", "11.111.111-1", ""),
            self.item("2", "Jane Doe", "12.345.678-9", "+56 9 1111 2222"),
        ]
        client = self.client(lambda request: httpx.Response(200, json={
            "data": {"boards": [{"items_page": {"items": items}}]}
        }))

        record = await client.find_by_identifier("123456789")

        assert record.id == "2"
        assert record.name == "Jane Doe"
        assert record.phone == "56911112222"
        body = json.loads(self.requests[0].content)
        assert body["variables"]["board"] == ["987"]
        assert self.requests[0].headers["authorization"] == "token"

    @pytest.mark.asyncio
    async def test_find_no_match(self):
        client = self.client(lambda request: httpx.Response(200, json={"data": {"boards": []}}))
        assert await client.find_by_identifier("123456789") is None

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self):
        client = self.client(lambda request: httpx.Response(200, json={"errors": [{"message": "bad"}]}))
        with pytest.raises(IntegrationError):
            await client.find_by_identifier("123456789")

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        client = self.client(lambda request: httpx.Response(429, text="rate limited"))
        with pytest.raises(IntegrationError) as exc_info:
            await client.get_record("1")
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_get_record(self):
        client = self.client(lambda request: httpx.Response(200, json={
            "data": {"items": [self.item("77", "Jane Doe", "12.345.678-9", "56911112222")]}
        }))
        record = await client.get_record("77")
        assert (record.id, record.identifier) == ("77", "12.345.678-9")

    @pytest.mark.asyncio
    async def test_create(self):
        client = self.client(lambda request: httpx.Response(200, json={"data": {"create_item": {"id": "555"}}}))

        record_id = await client.create("Jane Doe", "12.345.678-9", "56911112222")

        assert record_id == "555"
        variables = json.loads(self.requests[0].content)["variables"]
        assert variables["name"] == "Jane Doe"
        assert json.loads(variables["values"]) == {"rut": "12.345.678-9", "telefono": "56911112222"}

    @pytest.mark.asyncio
    async def test_create_without_id_raises(self):
        client = self.client(lambda request: httpx.Response(200, json={"data": {"create_item": None}}))
        with pytest.raises(IntegrationError):
            await client.create("Jane Doe", "1-9", "")

    @pytest.mark.asyncio
    async def test_attach_file_multipart(self):
        client = self.client(lambda request: httpx.Response(200, json={"data": {"add_file_to_column": {"id": "9001"}}}))

        asset_id = await client.attach_file("555", b"%PDF-1.4", "56911112222_1_20240101000000.pdf")

        assert asset_id == "9001"
        request = self.requests[0]
        assert request.url.path == "/v2/file"
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b'name="variables[file]"' in request.content
        assert b"56911112222_1_20240101000000.pdf" in request.content

    @pytest.mark.asyncio
    async def test_mock_mode_is_consistent(self, monkeypatch):
        monkeypatch.delenv("MONDAY_API_KEY")
        client = MondayClient()

        record_id = await client.create("Jane Doe", "12.345.678-9", "56911112222")

        assert record_id == "mock_1"
        assert (await client.find_by_identifier("123456789")).id == record_id
        assert (await client.get_record(record_id)).name == "Jane Doe"
        assert await client.attach_file(record_id, b"x", "a.pdf") == "mock_asset"
