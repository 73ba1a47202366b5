"""
Message renderer tests
"""
from reminder_flows.core.renderer import MessageRenderer


def test_substitutes_variables():
    renderer = MessageRenderer()
    text = renderer.render(
        "Hi {{client_name}}, {{ broker_name }} here.",
        {"client_name": "Ada", "broker_name": "Sam"}
    )
    assert text == "Hi Ada, Sam here."


def test_missing_variables_become_empty(caplog):
    renderer = MessageRenderer()
    with caplog.at_level("WARNING"):
        text = renderer.render("Hi {{client_name}}{{suffix}}!", {"client_name": None})
    assert text == "Hi !"
    assert "client_name" in caplog.text
    assert "suffix" in caplog.text


def test_non_string_values():
    assert MessageRenderer().render("{{count}} tasks", {"count": 3}) == "3 tasks"


def test_leaves_single_braces_alone():
    template = "Use {single} braces or {% raw %} text"
    assert MessageRenderer().render(template, {}) == template


def test_unusual_placeholders_never_survive(caplog):
    with caplog.at_level("WARNING"):
        text = MessageRenderer().render("Hi {{client-name}} / {{ loan.number }} / {{}}!", {})
    assert text == "Hi  /  / !"
    assert "client-name" in caplog.text
    assert "loan.number" in caplog.text


def test_dotted_names_read_nested_values():
    context = {"trigger_payload": {"source": "portal"}, "loan.number": "L-1"}
    text = MessageRenderer().render("{{ trigger_payload.source }} {{loan.number}}", context)
    assert text == "portal L-1"


def test_empty_template():
    assert MessageRenderer().render(None, {"a": 1}) == ""


def test_variables_in():
    assert MessageRenderer.variables_in("{{a}} and {{ b }} and {{a}}") == {"a", "b"}
