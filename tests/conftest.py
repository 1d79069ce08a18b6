"""Shared fakes for the messaging gateway, record store and AI client."""

import asyncio
import os
import sys
from typing import Dict, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from graph.classify import normalize_identifier
from graph.flow import FlowController
from graph.sessions import SessionStore
from graph.state import ChatEvent, FlowStep
from tools.errors import IntegrationError
from tools.monday import ExternalRecord

CONTACT = "whatsapp:+56911112222"


class FakeGateway:
    """Records outbound messages; can be told to fail the next sends."""

    def __init__(self, template_sid: Optional[str] = None, delay: float = 0.0):
        self.template_sid = template_sid
        self.enabled = True
        self.delay = delay
        self.sent: List[tuple] = []
        self.templates: List[tuple] = []
        self.media: Dict[str, object] = {}
        self.fail_next = 0

    async def send_text(self, address: str, body: str) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_next:
            self.fail_next -= 1
            raise IntegrationError("twilio", "send returned 503")
        self.sent.append((address, body))
        return f"SM{len(self.sent)}"

    async def send_template(self, address: str, template_id: str, variables: dict) -> str:
        self.templates.append((address, template_id, variables))
        return f"SMT{len(self.templates)}"

    async def download_media(self, url: str, sink) -> int:
        content = self.media.get(url, b"%PDF-1.4 document")
        if isinstance(content, Exception):
            raise content
        sink.write(content)
        return len(content)

    def bodies(self) -> List[str]:
        return [body for _, body in self.sent]


class FakeRecordStore:
    """In-memory stand-in for the monday.com board."""

    enabled = True

    def __init__(self, records: Optional[List[ExternalRecord]] = None):
        self.records = list(records or [])
        self.created: List[ExternalRecord] = []
        self.files: List[tuple] = []
        self.lookups = 0
        self.fail_lookup = False
        self.fail_uploads = 0

    async def find_by_identifier(self, normalized_id: str) -> Optional[ExternalRecord]:
        self.lookups += 1
        if self.fail_lookup:
            raise IntegrationError("monday", "request failed: timed out")
        for record in self.records:
            if normalize_identifier(record.identifier) == normalized_id:
                return record
        return None

    async def get_record(self, record_id: str) -> Optional[ExternalRecord]:
        return next((r for r in self.records if r.id == record_id), None)

    async def create(self, name: str, identifier: str, phone: str) -> str:
        record = ExternalRecord(f"item-{len(self.records) + 1}", name, identifier, phone)
        self.records.append(record)
        self.created.append(record)
        return record.id

    async def attach_file(self, record_id: str, content: bytes, filename: str) -> str:
        if self.fail_uploads:
            self.fail_uploads -= 1
            raise IntegrationError("monday", "file upload failed: 500")
        self.files.append((record_id, filename, content))
        return f"asset-{len(self.files)}"


class FakeLLM:
    def __init__(self, enabled: bool = False, reply: Optional[str] = None, error: bool = False):
        self.enabled = enabled
        self.reply = reply
        self.error = error
        self.calls: List[tuple] = []

    async def complete(self, history, system_prompt):
        self.calls.append((list(history), system_prompt))
        if self.error:
            raise IntegrationError("openai", "completion failed: 429")
        return self.reply


def text_event(body: str, contact: str = CONTACT) -> ChatEvent:
    return ChatEvent(contact_key=contact, text=body)


def media_event(count: int, contact: str = CONTACT, body: str = "") -> ChatEvent:
    return ChatEvent(
        contact_key=contact,
        text=body,
        attachment_urls=[f"https://api.twilio.com/media/ME{i}" for i in range(count)],
        attachment_types=["application/pdf"] * count,
    )


def seed_session(store: SessionStore, state: FlowStep, contact: str = CONTACT, **fields):
    """Put a contact directly at a given step."""
    session = store.create(contact)
    session.state = state
    for name, value in fields.items():
        setattr(session, name, value)
    return session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def records():
    return FakeRecordStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def controller(store, gateway, records, llm):
    return FlowController(store=store, gateway=gateway, records=records, llm=llm)

