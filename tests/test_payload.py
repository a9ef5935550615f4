"""Tests for template compilation, transforms, redaction and payload bodies."""

import json
import logging

import pytest
from pydantic import ValidationError

from allthewebhooks.core.warning_tracker import WarningTracker
from allthewebhooks.webhooks.errors import BuildError
from allthewebhooks.webhooks.payload import PayloadBuilder, json_escape
from allthewebhooks.webhooks.redaction import RedactionPolicy
from allthewebhooks.webhooks.templates import REDACTED, compile_template

from conftest import make_event, make_target


def render(template, **attributes):
    return compile_template(template).render(attributes)


# ============================================================================
# Template Tests
# ============================================================================

class TestTemplateCompilation:
    """Tests for parsing templates."""

    def test_placeholders_listed_in_order(self):
        """Test that placeholder names are extracted."""
        compiled = compile_template("{player.name} said {chat.message|trim}")

        assert compiled.placeholders == ["player.name", "chat.message"]

    def test_json_braces_are_literal(self):
        """Test that JSON object braces are not placeholders."""
        compiled = compile_template('{"content": "{text}"}')

        assert compiled.placeholders == ["text"]

    def test_compilation_is_cached(self):
        """Test that the same template compiles once."""
        assert compile_template("{a}") is compile_template("{a}")

    @pytest.mark.parametrize("template", [
        "{player.name",
        "{player|shout}",
        "{player|regex:(:x}",
        "{player|regex:onlypattern}",
    ])
    def test_malformed_templates_rejected(self, template):
        """Test that malformed templates raise BuildError."""
        with pytest.raises(BuildError):
            compile_template(template)

    def test_malformed_template_rejected_at_config_time(self):
        """Test that a bad template fails target validation."""
        with pytest.raises(ValidationError):
            make_target(template="{player")


class TestTemplateRendering:
    """Tests for substituting attributes and applying transforms."""

    def test_basic_substitution(self):
        """Test plain placeholder replacement."""
        assert render("{player}: {text}", player="Alice", text="hi") == "Alice: hi"

    def test_missing_renders_empty(self):
        """Test that unresolved placeholders become empty strings."""
        assert render("[{missing}]") == "[]"
        assert render("[{player}]", player=None) == "[]"

    def test_value_types(self):
        """Test rendering of numbers and booleans."""
        assert render("{a} {b}", a=4.5, b=True) == "4.5 true"

    def test_default_transform(self):
        """Test the default value for empty attributes."""
        assert render("{world|default:the server}") == "the server"
        assert render("{world|default:the server}", world="nether") == "nether"

    def test_case_and_trim(self):
        """Test chained trim, upper and lower."""
        assert render("{a|trim|upper}", a="  hi ") == "HI"
        assert render("{a|lower}", a="DIAMOND_ORE") == "diamond_ore"

    def test_truncate_and_replace(self):
        """Test truncation and literal replacement."""
        assert render("{a|truncate:3}", a="abcdef") == "abc"
        assert render("{a|replace:_: }", a="DIAMOND_ORE") == "DIAMOND ORE"

    def test_map_transform(self):
        """Test value mapping with pass-through for unknown values."""
        template = "{mode|map:SURVIVAL:S:CREATIVE:C}"

        assert render(template, mode="CREATIVE") == "C"
        assert render(template, mode="SPECTATOR") == "SPECTATOR"

    def test_path_segments(self):
        """Test first and last path segment transforms."""
        assert render("{p|last-path-segment}", p="a/b/c") == "c"
        assert render("{p|first-path-segment}", p="a/b/c") == "a"

    def test_regex_transform(self):
        """Test regex substitution."""
        assert render(r"{a|regex:\d+:#}", a="room 42") == "room #"

    def test_escaped_separators(self):
        """Test that escaped pipes and colons stay literal."""
        assert render(r"{a|replace:\:: =}", a="k:v") == "k =v"
        assert render(r"{a|default:x\|y}") == "x|y"

    def test_invalid_transform_argument_keeps_value(self):
        """Test that a transform with a bad argument leaves the value alone."""
        assert render("{a|truncate:lots}", a="abc") == "abc"


# ============================================================================
# Redaction Tests
# ============================================================================

class TestRedactionPolicy:
    """Tests for attribute redaction."""

    def test_exact_and_wildcard_patterns(self):
        """Test matching redaction patterns."""
        policy = RedactionPolicy(patterns=["player.uuid", "*.ip"])

        assert policy.is_redacted("player.uuid")
        assert policy.is_redacted("client.ip")
        assert not policy.is_redacted("player.name")

    def test_disabled_policy(self):
        """Test that a disabled policy redacts nothing."""
        policy = RedactionPolicy(enabled=False, patterns=["player.uuid"])

        assert not policy.is_redacted("player.uuid")
        assert not policy

    def test_redacted_in_render(self):
        """Test that redacted attributes render as a marker."""
        compiled = compile_template("{player.name} {player.uuid}")
        text = compiled.render(
            {"player.name": "Alice", "player.uuid": "secret"},
            is_redacted=RedactionPolicy(patterns=["player.uuid"]).is_redacted,
        )

        assert text == f"Alice {REDACTED}"


# ============================================================================
# Payload Builder Tests
# ============================================================================

class TestPayloadBuilder:
    """Tests for building request bodies."""

    def test_json_format_uses_template_as_body(self):
        """Test the default format with the chat example."""
        body = PayloadBuilder().build(make_event(player="Alice", text="hi"), make_target())

        assert body == b"Alice: hi"

    def test_json_format_escapes_values(self):
        """Test that values cannot break out of a JSON template."""
        target = make_target(template='{"content": "{text}"}')
        event = make_event(text='say "hi"\nnow')

        body = PayloadBuilder().build(event, target)

        assert json.loads(body) == {"content": 'say "hi"\nnow'}

    def test_text_format_keeps_raw_values(self):
        """Test that the text format does not escape."""
        target = make_target(format="text", template="{text}")

        body = PayloadBuilder().build(make_event(text='"quoted"'), target)

        assert body == b'"quoted"'
        assert target.effective_content_type.startswith("text/plain")

    def test_discord_format(self):
        """Test the Discord content/username wrapper."""
        target = make_target(format="discord", username="GameBot")

        body = PayloadBuilder().build(make_event(player="Alice", text="hi"), target)

        assert json.loads(body) == {"content": "Alice: hi", "username": "GameBot"}

    def test_output_is_deterministic(self):
        """Test that identical inputs give identical bytes."""
        builder = PayloadBuilder()
        target = make_target(format="discord")
        event = make_event(player="Alice", text="héllo")

        assert builder.build(event, target) == builder.build(event, target)

    def test_redaction_applies_to_body(self):
        """Test that the builder's redaction policy is used."""
        builder = PayloadBuilder(redaction=RedactionPolicy(patterns=["text"]))

        body = builder.build(make_event(player="Alice", text="password123"), make_target())

        assert body == f"Alice: {REDACTED}".encode()

    def test_missing_placeholder_warned_once(self, caplog):
        """Test that a missing attribute is reported a single time."""
        builder = PayloadBuilder(warnings=WarningTracker(logging.getLogger("test.payload")))
        target = make_target()

        with caplog.at_level(logging.WARNING, logger="test.payload"):
            builder.build(make_event(player="Alice"), target)
            builder.build(make_event(player="Bob"), target)

        messages = [r.getMessage() for r in caplog.records if "{text}" in r.getMessage()]
        assert len(messages) == 1

    def test_json_escape(self):
        """Test JSON string escaping without quotes."""
        assert json_escape('a"b') == 'a\\"b'
        assert json_escape("é") == "é"
