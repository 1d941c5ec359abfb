"""Unit tests for config placeholder rendering."""

from hybridflow.engine.templating import render, render_config


class TestRender:

    def test_embedded_placeholder(self):
        results = {"5": {"code": "WELCOME10-ABC123"}}
        assert render("Your code is: {{5.code}}", results) == "Your code is: WELCOME10-ABC123"

    def test_whole_placeholder_keeps_type(self):
        results = {"4": {"items": [1, 2]}}
        assert render("{{4.items}}", results) == [1, 2]

    def test_input_reference(self):
        assert render("Hi {{input.name}}", {}, {"name": "Ada"}) == "Hi Ada"

    def test_bare_key_reads_input(self):
        assert render("{{email}}", {}, {"email": "a@b.co"}) == "a@b.co"

    def test_unresolved(self):
        assert render("code: {{9.code}}", {}) == "code: "
        assert render("{{9.code}}", {}) is None

    def test_whitespace_inside_braces(self):
        assert render("{{ 3.email }}", {"3": {"email": "x@y.z"}}) == "x@y.z"

    def test_non_string_values_pass_through(self):
        assert render(10, {}) == 10
        assert render(None, {}) is None


class TestRenderConfig:

    def test_nested_config(self):
        config = {
            "to": "{{3.email}}",
            "variables": {"code": "{{5.code}}", "names": ["{{3.name}}", "static"]},
            "percentage": 10,
        }
        results = {"3": {"email": "v@example.com", "name": "Vi"}, "5": {"code": "C1"}}
        rendered = render_config(config, results)
        assert rendered == {
            "to": "v@example.com",
            "variables": {"code": "C1", "names": ["Vi", "static"]},
            "percentage": 10,
        }
        # original untouched
        assert config["to"] == "{{3.email}}"

    def test_empty_config(self):
        assert render_config(None, {}) == {}
