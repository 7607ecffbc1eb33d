# =====================================================================
# signald-webhook Template Set Unit Tests
# =====================================================================
# Tests for signald_webhook/templates.py
# Run with: pytest tests/test_templates_unit.py -v
# =====================================================================

import pytest

from signald_webhook.errors import ConfigError, RenderError
from signald_webhook.models import AlertMessage
from signald_webhook.templates import TemplateSet, re_replace_all


# Mark all tests in this file as unit tests
pytestmark = pytest.mark.unit


@pytest.fixture
def message(sample_alert_payload):
    return AlertMessage.from_dict(sample_alert_payload)


class TestRender:
    """Test rendering template text against a message"""

    def test_plain_text_unchanged(self, message):
        assert TemplateSet().render("tel:+15551234567", message) == "tel:+15551234567"

    def test_variables_resolved(self, message):
        rendered = TemplateSet().render("group:{{ commonLabels.team }}", message)

        assert rendered == "group:storage-team"

    def test_undefined_variable_raises(self, message):
        with pytest.raises(RenderError) as exc_info:
            TemplateSet().render("{{ commonLabels.nope }}", message)

        assert exc_info.value.template_text == "{{ commonLabels.nope }}"

    def test_syntax_error_raises(self, message):
        with pytest.raises(RenderError):
            TemplateSet().render("{% for %}", message)

    def test_missing_include_raises(self, message):
        with pytest.raises(RenderError):
            TemplateSet().render('{% include "missing.tmpl" %}', message)

    def test_firing_and_resolved_lists(self, message):
        text = "{{ firing | length }} firing, {{ resolved | length }} resolved"

        assert TemplateSet().render(text, message) == "1 firing, 1 resolved"

    def test_alertmanager_filters(self, message):
        text = (
            "{{ status | toUpper }} "
            "{{ groupLabels.alertname | toLower }} "
            "{% for k, v in groupLabels | sortedPairs %}{{ k }}={{ v }}{% endfor %}"
        )

        assert TemplateSet().render(text, message) == "FIRING diskfull alertname=DiskFull"

    def test_re_replace_all_accepts_dollar_groups(self):
        assert re_replace_all("db-01.example.com", r"^([^.]+)\..*$", "$1") == "db-01"

    def test_compiled_templates_cached(self, message):
        templates = TemplateSet()
        templates.render("{{ status }}", message)
        templates.render("{{ status }}", message)

        assert list(templates._compiled) == ["{{ status }}"]


class TestFromGlobs:
    """Test loading template files"""

    def test_files_available_to_include(self, template_dir, message):
        templates = TemplateSet.from_globs([str(template_dir / "*.tmpl")])

        rendered = templates.render('{% include "default.tmpl" %}', message)

        assert rendered.startswith("[FIRING] DiskFull\n")
        assert "- db-01 disk at 97%\n" in rendered
        assert "default.tmpl" in templates.sources

    def test_macros_importable(self, tmp_path, message):
        (tmp_path / "signal.tmpl").write_text(
            "{% macro title(m) %}{{ m.groupLabels.alertname }}!{% endmacro %}"
        )
        templates = TemplateSet.from_globs([str(tmp_path / "*.tmpl")])

        rendered = templates.render(
            '{% from "signal.tmpl" import title %}{{ title({"groupLabels": groupLabels}) }}',
            message,
        )

        assert rendered == "DiskFull!"

    def test_unmatched_glob_is_not_an_error(self, tmp_path):
        templates = TemplateSet.from_globs([str(tmp_path / "nothing-*.tmpl")])

        assert templates.sources == {}

    def test_unparseable_file_is_config_error(self, tmp_path):
        (tmp_path / "bad.tmpl").write_text("{% if %}")

        with pytest.raises(ConfigError, match="bad.tmpl"):
            TemplateSet.from_globs([str(tmp_path / "*.tmpl")])
