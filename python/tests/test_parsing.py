import pytest

from ops_agent.errors import ModelResponseError
from ops_agent.parsing import extract_yaml_block, parse_json_object


@pytest.mark.parametrize("text", [
    '{"resolved": true}',
    '```json\n{"resolved": true}\n```',
    'Verification done.\n{"resolved": true}\nLet me know if you need more.',
    '\ufeff{"resolved": true}',
    'Checked {pods} first. {"resolved": true}',
])
def test_json_object_found_in_reply(text):
    assert parse_json_object(text) == {"resolved": True}


def test_braces_inside_strings_do_not_confuse_parsing():
    text = 'Result: {"summary": "saw } and { in logs", "resolved": false} trailing'
    assert parse_json_object(text) == {"summary": "saw } and { in logs", "resolved": False}


@pytest.mark.parametrize("text", ["", "   ", "no json here", '{"unterminated": '])
def test_unusable_replies(text):
    with pytest.raises(ModelResponseError):
        parse_json_object(text, "verification result")


def test_yaml_fence_is_unwrapped():
    reply = "Here it is:\n```yaml\nkind: ConfigMap\nmetadata:\n  name: x\n```\nApply with care."
    assert extract_yaml_block(reply) == "kind: ConfigMap\nmetadata:\n  name: x\n"
    assert extract_yaml_block("  kind: Namespace\n\n") == "kind: Namespace\n"
