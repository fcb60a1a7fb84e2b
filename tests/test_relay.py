import asyncio

import pytest
from cryptography.fernet import Fernet

from app.crypto import MessageCipher
from app.errors import ModelCallError, StoreError, ValidationError
from app.providers.mock import MockModelClient
from app.relay import MAX_TOKENS, SYSTEM_PROMPT, TEMPERATURE, TOP_P, MessageRelay
from app.store.memory import MemoryTranscriptStore


class RecordingStore(MemoryTranscriptStore):
    def __init__(self, events, fail_user=False, fail_bot=False):
        super().__init__()
        self.events = events
        self.fail_user = fail_user
        self.fail_bot = fail_bot

    async def append(self, record):
        self.events.append(("store", record.is_user))
        if record.is_user and self.fail_user:
            raise StoreError("disk full")
        if not record.is_user and self.fail_bot:
            raise StoreError("disk full")
        return await super().append(record)


class RecordingModel(MockModelClient):
    def __init__(self, events, reply="You are not alone.", error=None):
        super().__init__(model="amazon.nova-pro-v1:0")
        self.events = events
        self.reply = reply
        self.error = error
        self.calls = []

    async def invoke(self, user_text, system_prompt=None, max_tokens=512, temperature=0.7, top_p=0.9):
        self.events.append(("model",))
        self.calls.append({
            "user_text": user_text,
            "system_prompt": system_prompt,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": top_p,
        })
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def cipher():
    return MessageCipher(Fernet.generate_key().decode("ascii"))


@pytest.mark.asyncio
async def test_handle_writes_user_turn_before_model_then_bot_turn(cipher):
    events = []
    store = RecordingStore(events)
    model = RecordingModel(events, reply="It makes sense to feel that way.")
    relay = MessageRelay(store, model, cipher)

    result = await relay.handle("u1", "I'm feeling anxious")
    await relay.writer.drain()

    assert result.reply == "It makes sense to feel that way."
    assert result.model == "amazon.nova-pro-v1:0"
    assert events == [("store", True), ("model",), ("store", False)]
    assert model.calls == [{
        "user_text": "I'm feeling anxious",
        "system_prompt": SYSTEM_PROMPT,
        "max_tokens": MAX_TOKENS,
        "temperature": TEMPERATURE,
        "top_p": TOP_P,
    }]
    assert (MAX_TOKENS, TEMPERATURE, TOP_P) == (512, 0.7, 0.9)


@pytest.mark.asyncio
async def test_records_are_encrypted_at_rest(cipher):
    events = []
    store = RecordingStore(events)
    relay = MessageRelay(store, RecordingModel(events, reply="Take a slow breath."), cipher)

    await relay.handle("u1", "I'm feeling anxious")
    await relay.writer.drain()

    records = await store.list_for_user("u1")
    assert [r.is_user for r in records] == [True, False]
    assert "anxious" not in records[0].message
    assert cipher.decrypt(records[0].message) == "I'm feeling anxious"
    assert cipher.decrypt(records[1].message) == "Take a slow breath."


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
async def test_blank_message_makes_no_writes_and_no_model_calls(cipher, text):
    events = []
    relay = MessageRelay(RecordingStore(events), RecordingModel(events), cipher)

    with pytest.raises(ValidationError):
        await relay.handle("u1", text)
    assert events == []


@pytest.mark.asyncio
async def test_user_write_failure_aborts_before_model_call(cipher):
    events = []
    model = RecordingModel(events)
    relay = MessageRelay(RecordingStore(events, fail_user=True), model, cipher)

    with pytest.raises(StoreError):
        await relay.handle("u1", "hello")
    assert model.calls == []


@pytest.mark.asyncio
async def test_model_failure_propagates_and_skips_bot_write(cipher):
    events = []
    store = RecordingStore(events)
    relay = MessageRelay(store, RecordingModel(events, error=ModelCallError("boom", name="ServiceUnavailable", status_code=503)), cipher)

    with pytest.raises(ModelCallError):
        await relay.handle("u1", "hello")
    await relay.writer.drain()

    records = await store.list_for_user("u1")
    assert [r.is_user for r in records] == [True]


@pytest.mark.asyncio
async def test_background_write_failure_is_not_surfaced(cipher):
    events = []
    store = RecordingStore(events, fail_bot=True)
    relay = MessageRelay(store, RecordingModel(events, reply="ok"), cipher)

    result = await relay.handle("u1", "hello")
    await relay.writer.drain()

    assert result.reply == "ok"
    assert relay.writer.pending == 0
    records = await store.list_for_user("u1")
    assert [r.is_user for r in records] == [True]


@pytest.mark.asyncio
async def test_reply_is_returned_before_bot_write_completes(cipher):
    gate = asyncio.Event()

    class SlowBotStore(MemoryTranscriptStore):
        async def append(self, record):
            if not record.is_user:
                await gate.wait()
            return await super().append(record)

    store = SlowBotStore()
    relay = MessageRelay(store, RecordingModel([], reply="hi"), cipher)

    result = await relay.handle("u1", "hello")
    assert result.reply == "hi"
    assert relay.writer.pending == 1

    gate.set()
    await relay.writer.drain()
    assert len(await store.list_for_user("u1")) == 2
