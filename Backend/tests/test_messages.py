# tests/test_messages.py
"""
Inbound parsing and outbound wire shapes.
"""
import json

import pytest

from app.core.exceptions import ProtocolError, UnknownMessageTypeError
from app.lib.websocket import serialize_event
from app.realtime.messages import (
    INBOUND_MESSAGES,
    AuthMessage,
    BuildProgress,
    Connected,
    GenerationProgress,
    PingMessage,
    Pong,
    SubscribeMessage,
    parse_inbound,
)


class TestParseInbound:

    def test_auth(self):
        message = parse_inbound('{"type": "auth", "token": "abc"}')
        assert isinstance(message, AuthMessage)
        assert message.token == "abc"

    def test_auth_token_of_wrong_type_still_parses(self):
        message = parse_inbound('{"type": "auth", "token": 123}')
        assert isinstance(message, AuthMessage)

    def test_extra_fields_ignored(self):
        assert isinstance(parse_inbound('{"type": "ping", "nonce": 7}'), PingMessage)

    def test_subscribe_without_channel(self):
        message = parse_inbound(b'{"type": "subscribe"}')
        assert isinstance(message, SubscribeMessage)
        assert message.channel is None

    @pytest.mark.parametrize("raw", ['{"type": "teleport"}', '{"token": "abc"}', '{"type": 5}'])
    def test_unknown_type(self, raw):
        with pytest.raises(UnknownMessageTypeError):
            parse_inbound(raw)

    @pytest.mark.parametrize("raw", ["not json", "", "[1, 2]", "null", b"\xff\xfe"])
    def test_malformed_payloads(self, raw):
        with pytest.raises(ProtocolError) as exc:
            parse_inbound(raw)
        assert not isinstance(exc.value, UnknownMessageTypeError)
        assert exc.value.message == "Invalid message format"

    def test_invalid_field_type_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_inbound('{"type": "subscribe", "channel": {"nested": true}}')

    def test_every_tag_maps_to_its_model(self):
        for tag, model in INBOUND_MESSAGES.items():
            assert model.model_fields["type"].annotation.__args__ == (tag,)


class TestOutbound:

    def test_camel_case_keys(self):
        assert json.loads(serialize_event(Connected(user_id="U1"))) == {
            "type": "connected",
            "userId": "U1",
        }

    def test_unset_optionals_dropped(self):
        payload = json.loads(serialize_event(GenerationProgress(stage="screens", percent=40)))
        assert payload == {"type": "generation_progress", "stage": "screens", "percent": 40}
        assert "currentFile" not in payload

    def test_optional_present(self):
        payload = json.loads(serialize_event(
            GenerationProgress(stage="screens", percent=50, current_file="App.tsx")
        ))
        assert payload["currentFile"] == "App.tsx"

    def test_whole_number_progress_stays_integer(self):
        wire = serialize_event(BuildProgress(build_id="b1", progress=75, stage="uploading"))
        assert '"progress":75,' in wire

        wire = serialize_event(GenerationProgress(stage="screens", percent=62.5))
        assert '"percent":62.5' in wire

    def test_pong_timestamp_is_numeric(self):
        payload = json.loads(serialize_event(Pong(timestamp=1700000000000)))
        assert payload == {"type": "pong", "timestamp": 1700000000000}

    def test_plain_dict_events_pass_through(self):
        assert json.loads(serialize_event({"type": "custom", "n": 1})) == {"type": "custom", "n": 1}
