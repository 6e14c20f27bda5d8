# ============================================================================
# PATCH ENGINE TESTS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Tests - Descriptor preparation
# PURPOSE: Verify predicates, patch accumulation, interpolation fallback
#          and template rendering
# ============================================================================
"""
Patch Engine Tests

Covers:
1. Predicate compilation (exact, *, wildcard, regex:)
2. Patch accumulation and structural deduplication
3. JSON-Patch on YAML and JSON content
4. Forced interpolation retry when raw content can't be parsed
5. includeIf on patches, interpolation flags
6. .j2 template descriptors
7. Placeholder scope restored after preparation

Run with:
    pytest tests/test_patches.py -v
"""

import json
from datetime import date

import pytest

from core.errors import ConfigurationError, PatchApplicationError
from core.models import Alveolus, Condition, Conditions, Descriptor, LoadedDescriptor, Patch
from orchestrator.engine.conditions import ConditionEvaluator
from orchestrator.engine.patches import CompiledPatch, PatchEngine, compile_predicate, merge_patches
from orchestrator.engine.substitutor import Substitutor
from orchestrator.engine.templates import TemplateResolutionError
from services.placeholders import ConfigLookup, current_placeholders


CONFIG_MAP = """apiVersion: v1
kind: ConfigMap
metadata:
  name: cm
data:
  mode: "{{mode:-default}}"
"""


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def engine():
    lookup = ConfigLookup(properties={"stage": "prod"}, environ={})
    return PatchEngine(
        Substitutor(lookup),
        condition_evaluator=ConditionEvaluator(environ={"ENABLED": "true"}),
    )


@pytest.fixture
def alveolus():
    return Alveolus(name="com.company:app:1.0.0", version="1.0.0")


def loaded(name="cm", content=CONFIG_MAP, extension="yaml", interpolate=False, resource=None):
    return LoadedDescriptor(
        configuration=Descriptor(name=name, interpolate=interpolate),
        content=content,
        extension=extension,
        resource=resource or f"kubehive/kubernetes/{name}.{extension}",
    )


def patches(*items):
    return merge_patches((), [Patch.model_validate(it) for it in items])


# ============================================================================
# PREDICATES
# ============================================================================

class TestPredicates:
    """Tests for compile_predicate and CompiledPatch.matches."""

    def test_star_matches_everything(self):
        predicate = compile_predicate("*")
        assert predicate("anything")
        assert predicate("")

    def test_regex_prefix(self):
        predicate = compile_predicate("regex:foo.*")
        assert predicate("foobar")
        assert not predicate("barfoo")

    def test_wildcard_is_regex(self):
        predicate = compile_predicate("app-.*")
        assert predicate("app-svc")
        assert not predicate("other-svc")

    def test_exact_name(self):
        predicate = compile_predicate("svc")
        assert predicate("svc")
        assert not predicate("svc2")

    def test_invalid_regex(self):
        with pytest.raises(ConfigurationError, match="Invalid patch predicate"):
            compile_predicate("regex:(")

    def test_matches_name_with_extension(self):
        compiled = CompiledPatch.of(Patch(descriptor_name="cm.yaml"))
        assert compiled.matches(loaded())
        assert not compiled.matches(loaded(extension="json"))


# ============================================================================
# ACCUMULATION
# ============================================================================

class TestMergePatches:
    """Tests for merge_patches."""

    def test_inherited_first(self):
        inherited = patches({"descriptorName": "a", "patch": [{"op": "remove", "path": "/x"}]})
        merged = merge_patches(inherited, [Patch(descriptor_name="b")])
        assert [p.patch.descriptor_name for p in merged] == ["a", "b"]

    def test_same_target_accumulates(self):
        merged = patches(
            {"descriptorName": "x", "patch": [{"op": "add", "path": "/a", "value": 1}]},
            {"descriptorName": "x", "patch": [{"op": "add", "path": "/b", "value": 2}]},
        )
        assert len(merged) == 2

    def test_structurally_equal_patch_kept_once(self):
        body = {"descriptorName": "x", "patch": [{"op": "add", "path": "/a", "value": 1}]}
        inherited = patches(body)
        merged = merge_patches(inherited, [Patch.model_validate(dict(body))])
        assert len(merged) == 1

    def test_does_not_mutate_inherited(self):
        inherited = patches({"descriptorName": "a"})
        merge_patches(inherited, [Patch(descriptor_name="b")])
        assert len(inherited) == 1

    def test_date_values_have_a_key(self):
        # YAML manifests load unquoted dates as datetime.date
        merged = patches({"descriptorName": "x", "patch": [{"op": "add", "path": "/a", "value": date(2024, 1, 31)}]})
        assert "2024-01-31" in merged[0].key


# ============================================================================
# PREPARATION
# ============================================================================

class TestPrepare:
    """Tests for PatchEngine.prepare."""

    def test_no_patch_keeps_content(self, engine, alveolus):
        descriptor = loaded()
        result = engine.prepare(alveolus, descriptor, (), {})
        assert result.content == CONFIG_MAP
        assert result is not descriptor

    def test_patch_on_yaml(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(), patches({
            "descriptorName": "cm",
            "patch": [{"op": "add", "path": "/data/extra", "value": "yes"}],
        }), {})
        document = json.loads(result.content)
        assert document["data"]["extra"] == "yes"
        assert document["metadata"]["name"] == "cm"

    def test_patches_apply_in_order(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(), patches(
            {"descriptorName": "*", "patch": [{"op": "add", "path": "/data/n", "value": "1"}]},
            {"descriptorName": "cm", "patch": [{"op": "replace", "path": "/data/n", "value": "2"}]},
        ), {})
        assert json.loads(result.content)["data"]["n"] == "2"

    def test_non_matching_patch_ignored(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(), patches({
            "descriptorName": "other",
            "patch": [{"op": "remove", "path": "/data"}],
        }), {})
        assert result.content == CONFIG_MAP

    def test_input_not_mutated(self, engine, alveolus):
        descriptor = loaded()
        engine.prepare(alveolus, descriptor, patches({
            "descriptorName": "cm",
            "patch": [{"op": "remove", "path": "/data"}],
        }), {})
        assert descriptor.content == CONFIG_MAP

    def test_patch_skipped_by_include_if(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(), patches({
            "descriptorName": "cm",
            "includeIf": {"conditions": [{"key": "ENABLED", "value": "false"}]},
            "patch": [{"op": "remove", "path": "/data"}],
        }), {})
        assert result.content == CONFIG_MAP

    def test_patch_kept_by_include_if(self, engine, alveolus):
        patch = Patch(
            descriptor_name="cm",
            include_if=Conditions(conditions=[Condition(key="ENABLED")]),
            patch=[{"op": "remove", "path": "/data"}],
        )
        result = engine.prepare(alveolus, loaded(), merge_patches((), [patch]), {})
        assert "data" not in json.loads(result.content)

    def test_interpolated_patch_body(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(), patches({
            "descriptorName": "cm",
            "interpolate": True,
            "patch": [{"op": "add", "path": "/data/replicas", "value": "{{replicas}}"}],
        }), {"replicas": "3", "mode": "fast"})
        data = json.loads(result.content)["data"]
        assert data["replicas"] == "3"
        # interpolate also renders the content
        assert data["mode"] == "fast"

    def test_date_value(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(), patches({
            "descriptorName": "cm",
            "patch": [{"op": "add", "path": "/data/since", "value": date(2024, 1, 31)}],
        }), {})
        assert json.loads(result.content)["data"]["since"] == "2024-01-31"

    def test_interpolated_date_value(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(), patches({
            "descriptorName": "cm",
            "interpolate": True,
            "patch": [{"op": "add", "path": "/data/since", "value": date(2024, 1, 31)}],
        }), {})
        assert json.loads(result.content)["data"]["since"] == "2024-01-31"

    def test_descriptor_interpolation(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(interpolate=True), (), {"mode": "slow"})
        assert 'mode: "slow"' in result.content

    def test_builtins_in_content(self, engine, alveolus):
        descriptor = loaded(content="name: {{descriptor.name}}\nrun: {{executionId}}\n", interpolate=True)
        result = engine.prepare(alveolus, descriptor, (), {}, execution_id="run-7")
        assert result.content == "name: cm\nrun: run-7\n"

    def test_lookup_properties_visible(self, engine, alveolus):
        result = engine.prepare(alveolus, loaded(content="stage: {{stage}}", interpolate=True), (), {})
        assert result.content == "stage: prod"

    def test_placeholders_win_over_properties(self, engine, alveolus):
        result = engine.prepare(
            alveolus, loaded(content="stage: {{stage}}", interpolate=True), (), {"stage": "dev"}
        )
        assert result.content == "stage: dev"


# ============================================================================
# INTERPOLATION FALLBACK
# ============================================================================

class TestInterpolationFallback:
    """Tests for the forced interpolation retry."""

    def test_retry_after_interpolation(self, engine, alveolus):
        descriptor = loaded(name="counter", content='{"replicas": {{replicas}}}', extension="json")
        result = engine.prepare(alveolus, descriptor, patches({
            "descriptorName": "counter",
            "patch": [{"op": "replace", "path": "/replicas", "value": 5}],
        }), {"replicas": "2"})
        assert json.loads(result.content) == {"replicas": 5}

    def test_failure_after_retry(self, engine, alveolus):
        with pytest.raises(PatchApplicationError, match="cm"):
            engine.prepare(alveolus, loaded(), patches({
                "descriptorName": "cm",
                "patch": [{"op": "remove", "path": "/does/not/exist"}],
            }), {})

    def test_no_retry_when_already_interpolated(self, engine, alveolus):
        descriptor = loaded(name="broken", content="a: [unclosed", interpolate=False)
        with pytest.raises(PatchApplicationError):
            engine.prepare(alveolus, descriptor, patches({
                "descriptorName": "broken",
                "interpolate": True,
                "patch": [{"op": "add", "path": "/b", "value": 1}],
            }), {})

    def test_interpolated_once(self, alveolus):
        calls = []

        def lookup(key, default):
            calls.append(key)
            return "1"

        engine = PatchEngine(Substitutor(lookup))
        descriptor = loaded(name="c", content='{"v": {{value}}}', extension="json", interpolate=True)
        result = engine.prepare(alveolus, descriptor, patches({
            "descriptorName": "c",
            "patch": [{"op": "add", "path": "/w", "value": 2}],
        }), {})
        assert json.loads(result.content) == {"v": 1, "w": 2}
        assert calls == ["value"]


# ============================================================================
# TEMPLATES
# ============================================================================

class TestTemplates:
    """Tests for .j2 descriptors."""

    TEMPLATE = (
        "apiVersion: v1\n"
        "kind: ConfigMap\n"
        "metadata:\n"
        "  name: {{ alveolus.name | replace(':', '-') | replace('.', '-') }}\n"
        "data:\n"
        "  size: \"{{ placeholder('size') }}\"\n"
        "  token: {{ placeholders.token | b64encode }}\n"
    )

    def _template(self, content=None, resource="kubehive/kubernetes/cm.yaml.j2"):
        return loaded(content=content or self.TEMPLATE, extension="j2", resource=resource)

    def test_render_before_patch(self, engine, alveolus):
        result = engine.prepare(alveolus, self._template(), patches({
            "descriptorName": "cm",
            "patch": [{"op": "add", "path": "/data/extra", "value": "1"}],
        }), {"size": "10", "token": "secret"})
        document = json.loads(result.content)
        assert document["metadata"]["name"] == "com-company-app-1-0-0"
        assert document["data"] == {"size": "10", "token": "c2VjcmV0", "extra": "1"}
        assert result.extension == "yaml"

    def test_json_template(self, engine, alveolus):
        descriptor = self._template(
            content='{"executionId": "{{ executionId }}"}',
            resource="kubehive/kubernetes/cm.json.j2",
        )
        result = engine.prepare(alveolus, descriptor, (), {}, execution_id="run-1")
        assert result.extension == "json"
        assert json.loads(result.content) == {"executionId": "run-1"}

    def test_undefined_variable(self, engine, alveolus):
        with pytest.raises(TemplateResolutionError):
            engine.prepare(alveolus, self._template(content="{{ nope }}"), (), {})

    def test_placeholder_without_value(self, engine, alveolus):
        with pytest.raises(TemplateResolutionError):
            engine.prepare(alveolus, self._template(content="{{ placeholder('unknown.key') }}"), (), {})

    def test_placeholder_default(self, engine, alveolus):
        result = engine.prepare(
            alveolus, self._template(content="v: {{ placeholder('unknown.key', 'd') }}"), (), {}
        )
        assert result.content == "v: d"


# ============================================================================
# PLACEHOLDER SCOPE
# ============================================================================

class TestScope:
    """Tests for placeholder scope handling during preparation."""

    def test_scope_restored(self, engine, alveolus):
        engine.prepare(alveolus, loaded(interpolate=True), (), {"mode": "x"})
        assert current_placeholders() == {}

    def test_scope_restored_on_failure(self, engine, alveolus):
        with pytest.raises(PatchApplicationError):
            engine.prepare(alveolus, loaded(), patches({
                "descriptorName": "cm",
                "patch": [{"op": "remove", "path": "/missing"}],
            }), {"mode": "x"})
        assert current_placeholders() == {}
